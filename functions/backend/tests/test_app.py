import unittest
from datetime import datetime, timezone

from fastapi.testclient import TestClient

from backend.app import create_app
from backend.auth import InMemoryIdentityProvider
from backend.config import AuthPolicy, Settings
from backend.dependencies import build_services
from shared.firebase_constants import collection_path

OPERATOR_EMAIL = "boss@gogfather.test"
OPERATOR_PASSWORD = "s3cret"
PHOTOS_PATH = collection_path("acme-1", "photos")


def _settings(**overrides):
    values = dict(
        firebase_api_key="test-key",
        firebase_project_id="acme-1",
        use_in_memory_backends=True,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


class BackendApiTests(unittest.TestCase):
    def setUp(self):
        self.provider = InMemoryIdentityProvider()
        self.provider.register(OPERATOR_EMAIL, OPERATOR_PASSWORD, uid="u1")
        settings = _settings()
        self.services = build_services(settings, identity_provider=self.provider)
        self.client = TestClient(create_app(settings=settings, services=self.services))
        self.client.__enter__()

    def tearDown(self):
        self.client.__exit__(None, None, None)

    def _sign_in(self):
        response = self.client.post(
            "/api/auth/sign-in",
            json={"email": OPERATOR_EMAIL, "password": OPERATOR_PASSWORD},
        )
        self.assertEqual(response.status_code, 200)
        identity = response.json()
        self.headers = {"Authorization": f"Bearer {identity['id_token']}"}
        return identity

    def _seed_photo(self, caption, day, featured=False):
        return self.services.store.add(
            PHOTOS_PATH,
            {
                "url": f"http://x/{day}.png",
                "caption": caption,
                "isFeatured": featured,
                "timestamp": datetime(2025, 1, day, tzinfo=timezone.utc),
            },
        )

    def test_diagnostics(self):
        response = self.client.get("/api/diagnostics")

        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["namespace"], "acme-1")
        self.assertEqual(payload["config_source"], "environment")
        self.assertTrue(payload["config_valid"])
        self.assertEqual(payload["auth_state"], "ready")
        self.assertFalse(payload["authorized"])

    def test_viewer_reads_but_cannot_write(self):
        self._seed_photo("public", 1)

        listing = self.client.get("/api/content/photos")
        self.assertEqual(listing.status_code, 200)
        self.assertEqual([r["caption"] for r in listing.json()["records"]], ["public"])

        response = self.client.post(
            "/api/content/photos", json={"url": "http://x/2.png", "caption": "Hi"}
        )
        self.assertEqual(response.status_code, 403)
        self.assertEqual(response.json()["detail"]["error"], "authorization_error")
        self.assertEqual(len(self.services.sync.records("photos")), 1)

    def test_sign_in_and_add_photo(self):
        identity = self._sign_in()
        self.assertEqual(identity["uid"], "u1")
        self.assertTrue(identity["authorized"])

        response = self.client.post(
            "/api/content/photos",
            json={"url": "http://x/1.png", "caption": "Hi"},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 201)
        doc_id = response.json()["id"]
        records = self.client.get("/api/content/photos").json()["records"]
        self.assertEqual(len(records), 1)
        self.assertEqual(records[0]["id"], doc_id)
        self.assertEqual(records[0]["caption"], "Hi")
        self.assertFalse(records[0]["isFeatured"])
        self.assertEqual(records[0]["ownerId"], "u1")

    def test_bad_password(self):
        response = self.client.post(
            "/api/auth/sign-in", json={"email": OPERATOR_EMAIL, "password": "wrong"}
        )

        self.assertEqual(response.status_code, 401)
        detail = response.json()["detail"]
        self.assertEqual(detail["reason"], "bad_credentials")
        self.assertEqual(detail["message"], "Invalid email or password.")

    def test_writes_need_the_callers_own_token(self):
        self._sign_in()
        blog = {"title": "t", "excerpt": "e", "content": "c"}
        # Shares the app and its services; the lifespan is already running.
        stranger = TestClient(self.client.app)
        response = stranger.post("/api/content/blog", json=blog)
        self.assertEqual(response.status_code, 403)
        self.assertFalse(stranger.get("/api/diagnostics").json()["authorized"])

        response = stranger.post("/api/auth/sign-out")
        self.assertFalse(response.json()["authorized"])

        response = self.client.post("/api/content/blog", json=blog, headers=self.headers)
        self.assertEqual(response.status_code, 201)
        self.assertEqual(len(self.services.sync.records("blog")), 1)

    def test_sign_in_does_not_authorize_the_shared_session(self):
        self._sign_in()

        self.assertFalse(self.services.auth.is_authorized)
        response = self.client.get("/api/diagnostics", headers=self.headers)
        self.assertTrue(response.json()["authorized"])

    def test_forged_token_is_rejected(self):
        response = self.client.post(
            "/api/content/blog",
            json={"title": "t", "excerpt": "e", "content": "c"},
            headers={"Authorization": "Bearer forged"},
        )

        self.assertEqual(response.status_code, 401)
        self.assertEqual(response.json()["detail"]["reason"], "bad_credentials")
        self.assertEqual(self.services.sync.records("blog"), [])

    def test_non_bearer_authorization_is_rejected(self):
        identity = self._sign_in()
        response = self.client.post(
            "/api/content/blog",
            json={"title": "t", "excerpt": "e", "content": "c"},
            headers={"Authorization": f"Basic {identity['id_token']}"},
        )

        self.assertEqual(response.status_code, 401)

    def test_missing_required_field(self):
        self._sign_in()

        response = self.client.post(
            "/api/content/videos",
            json={"externalVideoId": "abc", "title": ""},
            headers=self.headers,
        )

        self.assertEqual(response.status_code, 422)
        self.assertEqual(response.json()["detail"]["error"], "validation_error")

    def test_unknown_collection(self):
        self._sign_in()

        self.assertEqual(self.client.get("/api/content/podcasts").status_code, 404)
        response = self.client.post(
            "/api/content/podcasts", json={"title": "x"}, headers=self.headers
        )
        self.assertEqual(response.status_code, 404)

    def test_feature_photo_and_featured_view(self):
        self._sign_in()
        p1 = self._seed_photo("first", 1, featured=True)
        p2 = self._seed_photo("second", 2)

        response = self.client.post(f"/api/photos/{p2}/feature", headers=self.headers)
        self.assertEqual(response.status_code, 200)

        payload = self.client.get("/api/photos/featured").json()
        self.assertEqual(payload["featured"]["id"], p2)
        self.assertEqual([photo["id"] for photo in payload["others"]], [p1])

    def test_feature_missing_photo(self):
        self._sign_in()
        response = self.client.post("/api/photos/missing/feature", headers=self.headers)
        self.assertEqual(response.status_code, 404)

    def test_delete_requires_confirmation(self):
        self._sign_in()
        doc_id = self._seed_photo("doomed", 1)

        response = self.client.delete(
            f"/api/content/photos/{doc_id}", headers=self.headers
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["detail"]["error"], "confirmation_required")
        self.assertIsNotNone(self.services.store.get(PHOTOS_PATH, doc_id))

        response = self.client.delete(
            f"/api/content/photos/{doc_id}",
            params={"confirm": "true"},
            headers=self.headers,
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(self.client.get("/api/content/photos").json()["records"], [])

    def test_archive(self):
        self._seed_photo("jan", 5)
        self.services.store.add(
            PHOTOS_PATH,
            {
                "url": "http://x/old.png",
                "caption": "old",
                "isFeatured": False,
                "timestamp": datetime(2024, 6, 1, tzinfo=timezone.utc),
            },
        )

        years = self.client.get("/api/photos/archive").json()["years"]

        self.assertEqual([year["year"] for year in years], ["2025", "2024"])
        self.assertEqual(years[0]["months"][0]["month"], "January")
        self.assertEqual(years[1]["months"][0]["photos"][0]["caption"], "old")


class UnconfiguredAppTests(unittest.TestCase):
    def test_missing_configuration_disables_content(self):
        settings = Settings(_env_file=None, firebase_project_id="acme-1")
        services = build_services(settings, identity_provider=InMemoryIdentityProvider())

        with TestClient(create_app(settings=settings, services=services)) as client:
            payload = client.get("/api/diagnostics").json()
            self.assertFalse(payload["config_valid"])
            self.assertEqual(payload["namespace"], "default-app-id")
            self.assertEqual(payload["error"]["error"], "configuration_error")

            self.assertEqual(client.get("/api/content/photos").json()["records"], [])
            response = client.post(
                "/api/content/photos", json={"url": "u", "caption": "c"}
            )
            self.assertEqual(response.status_code, 403)


class AnonymousViewerTests(unittest.TestCase):
    def test_anonymous_session_reads_only(self):
        settings = _settings(auth_policy=AuthPolicy.ANONYMOUS_ALLOWED)
        provider = InMemoryIdentityProvider()
        services = build_services(settings, identity_provider=provider)

        with TestClient(create_app(settings=settings, services=services)) as client:
            payload = client.get("/api/diagnostics").json()
            self.assertTrue(payload["is_anonymous"])
            self.assertFalse(payload["authorized"])
            self.assertEqual(provider.calls, ["anonymous"])

            response = client.post(
                "/api/content/art",
                json={"title": "t", "imageUrl": "http://i", "description": "d"},
            )
            self.assertEqual(response.status_code, 403)


if __name__ == "__main__":
    unittest.main()
