import unittest
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock

from fastapi.testclient import TestClient

from betnad.app import create_app
from betnad.config import Settings
from betnad.db import InMemoryUserStore, InMemoryWalletStore
from betnad.dependencies import Services, get_wallet_provider
from betnad.errors import ProviderError, StorageUnavailable
from betnad.identity import ProviderUserMetadata, ProviderUserRecord, StaticIdentityProvider
from betnad.privy import InMemoryWalletProvider
from betnad.secret_store import SecretStore
from betnad.state_store import InMemoryOAuthStateStore
from betnad.twitter_oauth import TwitterOAuthClient, TwitterProfile, TwitterTokens


class SteppingClock:
    """Returns a strictly increasing time on every call."""

    def __init__(self):
        self.current = datetime(2025, 1, 1, tzinfo=timezone.utc)

    def __call__(self):
        self.current += timedelta(seconds=1)
        return self.current


class FakeTwitterClient:
    configured = True

    def __init__(self):
        self.exchanged = []

    def authorization_url(self, state, code_challenge):
        return f"https://twitter.test/authorize?state={state}&challenge={code_challenge}"

    def exchange_code(self, code, code_verifier):
        self.exchanged.append((code, code_verifier))
        return TwitterTokens(access_token="x-access", refresh_token="x-refresh", expires_in=7200)

    def refresh(self, refresh_token):
        return TwitterTokens(access_token="x-access-2", refresh_token="x-refresh-2", expires_in=7200)

    def fetch_profile(self, access_token):
        return TwitterProfile(
            id="42",
            username="bettor",
            name="Big Bettor",
            profile_image_url="https://pbs.twimg.test/bettor.png",
        )


def make_services(**overrides) -> Services:
    settings = Settings(_env_file=None, use_in_memory_backends=True, app_env="test")
    values = dict(
        settings=settings,
        secrets=SecretStore(settings),
        identity=StaticIdentityProvider(),
        users=InMemoryUserStore(clock=SteppingClock()),
        wallets=InMemoryWalletStore(),
        wallet_provider=InMemoryWalletProvider(),
        twitter=FakeTwitterClient(),
        oauth_states=InMemoryOAuthStateStore(),
    )
    values.update(overrides)
    return Services(**values)


ALICE = ProviderUserRecord(
    uid="alice",
    email="alice@example.com",
    display_name="Alice",
    photo_url="https://example.com/alice.png",
    user_metadata=ProviderUserMetadata(
        creation_timestamp=1_700_000_000_000,
        last_sign_in_timestamp=1_700_000_500_000,
    ),
)


class BackendTestCase(unittest.TestCase):
    def setUp(self):
        self.services = make_services()
        self.services.identity.register("token-alice", ALICE)
        self.client = TestClient(create_app(self.services.settings, self.services))

    def login(self, token="token-alice"):
        return self.client.post("/api/auth/login", json={"idToken": token})


class LoginRouteTests(BackendTestCase):
    def test_first_login_creates_user(self):
        response = self.login()
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["message"], "Login successful")
        self.assertEqual(payload["user"]["uid"], "alice")
        self.assertEqual(payload["user"]["email"], "alice@example.com")
        self.assertEqual(payload["user"]["displayName"], "Alice")
        self.assertEqual(payload["user"]["photoURL"], "https://example.com/alice.png")
        self.assertIn("_id", payload["user"])
        self.assertEqual(len(self.services.users.users), 1)

        stored = self.services.users.find_by_uid("alice")
        self.assertEqual(
            stored.created_at, datetime.fromtimestamp(1_700_000_000, tz=timezone.utc)
        )

    def test_repeat_login_updates_timestamp_without_duplicating(self):
        first = self.login().json()["user"]
        first_stored = self.services.users.find_by_uid("alice")

        second = self.login().json()["user"]
        second_stored = self.services.users.find_by_uid("alice")

        self.assertEqual(first["uid"], second["uid"])
        self.assertEqual(first["_id"], second["_id"])
        self.assertEqual(first["createdAt"], second["createdAt"])
        self.assertNotEqual(first["updatedAt"], second["updatedAt"])
        self.assertGreater(second_stored.updated_at, first_stored.updated_at)
        self.assertEqual(second_stored.created_at, first_stored.created_at)
        self.assertEqual(len(self.services.users.users), 1)

    def test_invalid_token_fails_without_writing(self):
        response = self.login("forged-token")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {
                "success": False,
                "error": "LOGIN_FAILED",
                "message": "Invalid or expired token",
            },
        )
        self.assertEqual(self.services.users.users, {})

    def test_invalid_token_does_not_modify_existing_user(self):
        self.login()
        before = self.services.users.find_by_uid("alice")
        self.login("forged-token")
        self.assertEqual(self.services.users.find_by_uid("alice"), before)

    def test_empty_token_is_rejected_by_schema(self):
        response = self.client.post("/api/auth/login", json={"idToken": ""})
        self.assertEqual(response.status_code, 400)
        payload = response.json()
        self.assertFalse(payload["success"])
        self.assertEqual(payload["error"], "VALIDATION_ERROR")
        self.assertIn("idToken", payload["message"])

    def test_missing_provider_user_fails(self):
        del self.services.identity.records["alice"]
        response = self.login()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "User not found")
        self.assertEqual(self.services.users.users, {})

    def test_storage_outage_returns_503(self):
        users = MagicMock()
        users.create_or_update.side_effect = StorageUnavailable()
        self.services.users = users

        response = self.login()
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "LOGIN_FAILED")
        self.assertEqual(response.json()["message"], "Storage unavailable")

    def test_unexpected_error_does_not_leak_detail(self):
        users = MagicMock()
        users.create_or_update.side_effect = RuntimeError("connection string mongodb://u:p@db")
        self.services.users = users

        response = self.login()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Login failed")

    def test_twitter_tokens_are_not_returned(self):
        self.login()
        self.services.users.update(
            "alice", twitter_access_token="secret-access", twitter_id="42"
        )
        user = self.login().json()["user"]
        self.assertEqual(user["twitterId"], "42")
        self.assertNotIn("twitterAccessToken", user)
        self.assertNotIn("secret-access", str(user))


class VerifyTokenRouteTests(BackendTestCase):
    def verify(self, token="token-alice"):
        return self.client.post("/api/auth/verify-token", json={"idToken": token})

    def test_unknown_user_is_not_an_error(self):
        response = self.verify()
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"valid": False, "message": "User not found in database"}
        )

    def test_known_user_matches_stored_record(self):
        login_user = self.login().json()["user"]
        response = self.verify()
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["valid"])
        self.assertEqual(payload["message"], "Token is valid")
        self.assertEqual(payload["user"], login_user)

    def test_verify_does_not_write(self):
        self.verify()
        self.assertEqual(self.services.users.users, {})

    def test_invalid_token_reports_invalid_with_200(self):
        response = self.verify("forged-token")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(), {"valid": False, "message": "Invalid or expired token"}
        )

    def test_storage_outage_reports_invalid_with_200(self):
        users = MagicMock()
        users.find_by_uid.side_effect = StorageUnavailable()
        self.services.users = users
        response = self.verify()
        self.assertEqual(response.status_code, 200)
        self.assertFalse(response.json()["valid"])


class HealthRouteTests(BackendTestCase):
    def test_health(self):
        response = self.client.get("/api/auth/health")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["status"], "ok")
        self.assertEqual(payload["service"], "auth-service")
        self.assertTrue(payload["timestamp"].endswith("Z"))

    def test_health_ignores_broken_dependencies(self):
        broken = MagicMock()
        broken.find_by_uid.side_effect = StorageUnavailable()
        self.services.users = broken
        self.services.identity = MagicMock(side_effect=RuntimeError)
        response = self.client.get("/api/auth/health")
        self.assertEqual(response.status_code, 200)
        self.assertEqual(response.json()["status"], "ok")

    def test_root(self):
        response = self.client.get("/")
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertEqual(payload["message"], "BetNad Backend API")
        self.assertEqual(payload["status"], "running")
        self.assertEqual(payload["version"], "1.0.0")


class TwitterOAuthRouteTests(BackendTestCase):
    def start_flow(self):
        response = self.client.get("/api/twitter/oauth/url")
        self.assertEqual(response.status_code, 200)
        return response.json()

    def test_url_stores_state(self):
        payload = self.start_flow()
        self.assertTrue(payload["success"])
        self.assertIn(payload["state"], payload["url"])
        self.assertIn(payload["state"], self.services.oauth_states.items)

    def test_callback_creates_twitter_user(self):
        state = self.start_flow()["state"]
        response = self.client.post(
            "/api/twitter/oauth/callback", json={"code": "auth-code", "state": state}
        )
        self.assertEqual(response.status_code, 200)
        payload = response.json()
        self.assertTrue(payload["success"])
        self.assertEqual(payload["user"]["uid"], "twitter:42")
        self.assertEqual(payload["user"]["twitterUsername"], "bettor")
        self.assertEqual(payload["user"]["displayName"], "Big Bettor")
        self.assertEqual(payload["user"]["email"], "")
        self.assertNotIn("twitterAccessToken", payload["user"])

        stored = self.services.users.find_by_uid("twitter:42")
        self.assertEqual(stored.twitter_access_token, "x-access")
        self.assertEqual(stored.twitter_refresh_token, "x-refresh")
        self.assertIsNotNone(stored.twitter_token_expires_at)

        code, verifier = self.services.twitter.exchanged[0]
        self.assertEqual(code, "auth-code")
        self.assertTrue(verifier)

    def test_callback_state_is_single_use(self):
        state = self.start_flow()["state"]
        body = {"code": "auth-code", "state": state}
        self.client.post("/api/twitter/oauth/callback", json=body)
        response = self.client.post("/api/twitter/oauth/callback", json=body)
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "TWITTER_LOGIN_FAILED")
        self.assertEqual(response.json()["message"], "Invalid or expired OAuth state")

    def test_callback_with_id_token_links_existing_user(self):
        self.login()
        state = self.start_flow()["state"]
        response = self.client.post(
            "/api/twitter/oauth/callback",
            json={"code": "auth-code", "state": state, "idToken": "token-alice"},
        )
        self.assertEqual(response.status_code, 200)
        user = response.json()["user"]
        self.assertEqual(user["uid"], "alice")
        self.assertEqual(user["displayName"], "Alice")
        self.assertEqual(user["twitterId"], "42")
        self.assertEqual(len(self.services.users.users), 1)

        # A later Firebase login keeps the linkage.
        relogin = self.login().json()["user"]
        self.assertEqual(relogin["twitterUsername"], "bettor")

    def test_refresh(self):
        response = self.client.post(
            "/api/twitter/oauth/refresh", json={"refreshToken": "x-refresh"}
        )
        self.assertEqual(response.status_code, 200)
        self.assertEqual(
            response.json(),
            {
                "success": True,
                "accessToken": "x-access-2",
                "refreshToken": "x-refresh-2",
                "expiresIn": 7200,
                "message": "Token refreshed",
            },
        )

    def test_refresh_with_malformed_upstream_expiry(self):
        session = MagicMock()
        session.post.return_value = MagicMock(ok=True, status_code=200)
        session.post.return_value.json.return_value = {
            "access_token": "x-access-2",
            "expires_in": "two hours",
        }
        self.services.twitter = TwitterOAuthClient(
            "client-id", "client-secret", "http://localhost:3000/callback", session=session
        )
        response = self.client.post(
            "/api/twitter/oauth/refresh", json={"refreshToken": "x-refresh"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(
            response.json(),
            {
                "success": False,
                "error": "TWITTER_REFRESH_FAILED",
                "message": "Failed to retrieve Twitter access token",
            },
        )

    def test_refresh_unexpected_error_keeps_envelope(self):
        twitter = MagicMock(configured=True)
        twitter.refresh.side_effect = RuntimeError("boom")
        self.services.twitter = twitter
        response = self.client.post(
            "/api/twitter/oauth/refresh", json={"refreshToken": "x-refresh"}
        )
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "TWITTER_REFRESH_FAILED")
        self.assertEqual(response.json()["message"], "Token refresh failed")

    def test_not_configured(self):
        self.services.twitter = TwitterOAuthClient("", "", "")
        response = self.client.get("/api/twitter/oauth/url")
        self.assertEqual(response.status_code, 503)
        self.assertEqual(response.json()["error"], "TWITTER_NOT_CONFIGURED")


class WalletRouteTests(BackendTestCase):
    def provision(self, token="token-alice"):
        return self.client.post("/api/wallets", json={"idToken": token})

    def test_provision_creates_wallet_once(self):
        self.login()
        first = self.provision()
        self.assertEqual(first.status_code, 200)
        wallet = first.json()["wallet"]
        self.assertEqual(first.json()["message"], "Wallet created")
        self.assertEqual(wallet["userId"], "alice")
        self.assertEqual(wallet["chainType"], "ethereum")
        self.assertTrue(wallet["address"].startswith("0x"))
        self.assertEqual(
            self.services.users.find_by_uid("alice").wallet_address, wallet["address"]
        )

        second = self.provision()
        self.assertEqual(second.json()["message"], "Wallet already exists")
        self.assertEqual(second.json()["wallet"]["address"], wallet["address"])
        self.assertEqual(len(self.services.wallet_provider.wallets), 1)

    def test_login_returns_wallet_address(self):
        self.login()
        address = self.provision().json()["wallet"]["address"]
        self.assertEqual(self.login().json()["user"]["walletAddress"], address)

    def test_unknown_user_is_rejected(self):
        response = self.provision()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["error"], "WALLET_PROVISION_FAILED")
        self.assertEqual(response.json()["message"], "User not found in database")
        self.assertEqual(self.services.wallet_provider.wallets, {})

    def test_wallet_provider_dependency_can_be_overridden(self):
        self.login()
        failing = MagicMock()
        failing.create_wallet.side_effect = ProviderError()
        self.client.app.dependency_overrides[get_wallet_provider] = lambda: failing
        self.addCleanup(self.client.app.dependency_overrides.clear)

        response = self.provision()
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Upstream provider request failed")
        failing.create_wallet.assert_called_once_with("ethereum")
        self.assertIsNone(self.services.wallets.find_by_user_id("alice"))

    def test_invalid_token_is_rejected(self):
        response = self.provision("forged-token")
        self.assertEqual(response.status_code, 400)
        self.assertEqual(response.json()["message"], "Invalid or expired token")


class LifespanTests(unittest.TestCase):
    def test_startup_initializes_identity_provider(self):
        services = make_services()
        app = create_app(services.settings, services)
        with TestClient(app) as client:
            self.assertEqual(client.get("/api/auth/health").status_code, 200)
        self.assertEqual(services.identity.initialized, 1)

    def test_shutdown_closes_database(self):
        database = MagicMock()
        services = make_services(database=database)
        with TestClient(create_app(services.settings, services)):
            database.connect.assert_called_once()
            database.close.assert_not_called()
        database.close.assert_called_once()


if __name__ == "__main__":
    unittest.main()
