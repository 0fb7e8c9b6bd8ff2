"""HTTP surface: library mutations feed the timeline, stats and admin routes."""


def _seed(client):
    user = client.post("/api/library/users", json={"name": "Reader"}).json()
    headers = {"X-User-Id": str(user["id"])}
    author = client.post("/api/library/authors", json={"name": "Martha Wells"}, headers=headers).json()
    book = client.post(
        "/api/library/books",
        json={"title": "All Systems Red", "author_ids": [author["id"]], "page_count": 144},
        headers=headers,
    ).json()
    return user, headers, author, book


class TestHealth:

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestTimelineRoutes:

    def test_mutations_show_up_in_the_feed(self, client):
        user, headers, author, book = _seed(client)

        response = client.get("/api/timeline", params={"scope": "mine"}, headers=headers)

        assert response.status_code == 200
        body = response.json()
        assert [e["action"] for e in body["events"]] == ["created", "created"]
        assert body["events"][0]["title"] == "All Systems Red"
        assert body["events"][0]["details"] == [
            {"label": "Author", "value": "Martha Wells"},
            {"label": "Pages", "value": "144"},
        ]
        assert body["next_cursor"] is None

    def test_cursor_walks_the_feed(self, client):
        _seed(client)

        first = client.get("/api/timeline", params={"limit": 1}).json()
        second = client.get("/api/timeline", params={"limit": 1, "cursor": first["next_cursor"]}).json()

        assert first["events"][0]["id"] > second["events"][0]["id"]
        assert second["next_cursor"] is None

    def test_bad_cursor_is_a_client_error(self, client):
        response = client.get("/api/timeline", params={"cursor": "%%%"})
        assert response.status_code == 400

    def test_mine_without_a_user_is_a_client_error(self, client):
        response = client.get("/api/timeline", params={"scope": "mine"})
        assert response.status_code == 400

    def test_entity_history(self, client):
        _, headers, author, _ = _seed(client)
        client.put(f"/api/library/authors/{author['id']}", json={"name": "M. Wells"}, headers=headers)

        response = client.get(f"/api/timeline/entities/author/{author['id']}")

        assert response.status_code == 200
        assert [e["action"] for e in response.json()] == ["created", "updated"]

    def test_unknown_entity_type_is_rejected(self, client):
        response = client.get("/api/timeline/entities/movie/1")
        assert response.status_code == 422


class TestLibraryRoutes:

    def test_duplicate_title_is_a_conflict(self, client):
        _, headers, _, _ = _seed(client)

        response = client.post("/api/library/books", json={"title": "all systems red"}, headers=headers)

        assert response.status_code == 409
        feed = client.get("/api/timeline").json()
        assert len(feed["events"]) == 2

    def test_missing_reference_is_not_found(self, client):
        response = client.post("/api/library/books", json={"title": "Network Effect", "author_ids": [99]})
        assert response.status_code == 404

    def test_reading_requires_an_acting_user(self, client):
        _, _, _, book = _seed(client)

        response = client.post("/api/library/readings", json={"book_id": book["id"]})

        assert response.status_code == 401

    def test_reading_lifecycle(self, client):
        _, headers, _, book = _seed(client)

        created = client.post(
            "/api/library/readings",
            json={"book_id": book["id"], "status": "reading", "format": "audiobook"},
            headers=headers,
        )
        assert created.status_code == 201
        reading_id = created.json()["id"]
        finished = client.put(
            f"/api/library/readings/{reading_id}",
            json={"status": "read", "rating": 4.5},
        )
        assert finished.status_code == 200

        history = client.get(f"/api/timeline/entities/reading/{reading_id}").json()
        assert [e["action"] for e in history] == ["started", "finished"]
        assert history[-1]["reading_data"] == {"book_id": book["id"], "rating": 4.5, "status": "read"}

    def test_genre_rename_refreshes_book_history(self, client):
        _, headers, _, _ = _seed(client)
        genre = client.post("/api/library/genres", json={"name": "Science Fiction"}, headers=headers).json()
        book = client.post(
            "/api/library/books",
            json={"title": "Dune", "primary_genre_id": genre["id"]},
            headers=headers,
        ).json()

        renamed = client.put(f"/api/library/genres/{genre['id']}", json={"name": "Space Opera"}, headers=headers)

        assert renamed.status_code == 200
        history = client.get(f"/api/timeline/entities/book/{book['id']}").json()
        assert [e["genres"] for e in history] == [["Space Opera"]]
        assert history[0]["details"][1] == {"label": "Genres", "value": "Space Opera"}

    def test_author_delete_refreshes_book_history(self, client):
        _, headers, author, book = _seed(client)

        deleted = client.delete(f"/api/library/authors/{author['id']}", headers=headers)

        assert deleted.status_code == 200
        history = client.get(f"/api/timeline/entities/book/{book['id']}").json()
        assert history[0]["details"][0] == {"label": "Author", "value": "Unknown"}
        # The deleted author's own events keep their last known name.
        author_history = client.get(f"/api/timeline/entities/author/{author['id']}").json()
        assert [e["title"] for e in author_history] == ["Martha Wells", "Martha Wells"]

    def test_invalid_rating_is_rejected(self, client):
        _, headers, _, book = _seed(client)

        response = client.post(
            "/api/library/readings",
            json={"book_id": book["id"], "status": "read", "rating": 4.2},
            headers=headers,
        )

        assert response.status_code == 422


class TestStatsRoutes:

    def test_stats_are_cached_after_the_first_read(self, client):
        _, headers, _, book = _seed(client)
        client.post("/api/library/shelves", json={"book_id": book["id"]}, headers=headers)

        first = client.get("/api/stats", headers=headers).json()
        second = client.get("/api/stats", headers=headers).json()

        assert first["cached"] is False
        assert second["cached"] is True
        assert second["data"]["book_summary"]["total_books"] == 1

    def test_delete_and_years(self, client):
        _, headers, _, _ = _seed(client)
        client.get("/api/stats", headers=headers)

        assert client.delete("/api/stats", headers=headers).json()["status"] == "deleted"
        assert client.get("/api/stats/years", headers=headers).json() == []

    def test_stats_need_a_user(self, client):
        assert client.get("/api/stats").status_code == 401


class TestAdminRoutes:

    def test_rebuild_and_refresh(self, client):
        _, headers, author, book = _seed(client)
        client.put(f"/api/library/authors/{author['id']}", json={"name": "M. Wells"}, headers=headers)

        refreshed = client.post(f"/api/admin/timeline/refresh/author/{author['id']}")
        assert refreshed.status_code == 200
        assert refreshed.json()["entities"] == 2

        history = client.get(f"/api/timeline/entities/book/{book['id']}").json()
        assert history[0]["details"][0]["value"] == "M. Wells"

        rebuilt = client.post("/api/admin/timeline/rebuild", params={"orphan_policy": "prune"})
        assert rebuilt.status_code == 200
        body = rebuilt.json()
        assert body["status"] == "completed"
        assert body["orphan_policy"] == "prune"
        assert body["updated"] == 0
