import json
import unittest

from s3_vfs.context import (
    ResolvedContext,
    client_kwargs,
    create_table_client,
    find_connection_reference,
    resolve_context,
)
from s3_vfs.errors import (
    AuthenticationFailedError,
    DataCorruptError,
    InvalidArgumentError,
    NotSupportedError,
    OperationCancelledError,
)
from s3_vfs.models import BackendMode
from s3_vfs.profiles import PLUGIN_ID_S3, PLUGIN_ID_S3_TABLE, ConnectionNotFoundError, SecretNotFoundError
from s3_vfs.settings import AdapterSettings


class FakeConnections:
    def __init__(self, profiles=None, secrets=None, prompt_answer=None):
        self.profiles = profiles or {}
        self.secrets = secrets or {}
        self.prompt_answer = prompt_answer
        self.prompts = []
        self.secret_calls = []

    def get_profile_json(self, name):
        if name not in self.profiles:
            raise ConnectionNotFoundError(name)
        profile = self.profiles[name]
        return profile if isinstance(profile, str) else json.dumps(profile)

    def get_secret(self, name, kind):
        self.secret_calls.append((name, kind))
        if name not in self.secrets:
            raise SecretNotFoundError(name)
        return self.secrets[name]

    def prompt_for_secret(self, name, kind):
        self.prompts.append((name, kind))
        return self.prompt_answer


class FindConnectionReferenceTests(unittest.TestCase):
    def test_prefix_and_authority_forms_agree(self):
        self.assertEqual(("prod", "/bucket/key", ""), find_connection_reference("/@conn:prod/bucket/key"))
        name, remainder, authority = find_connection_reference("//@conn/prod/bucket/key")
        self.assertEqual(("prod", "/bucket/key", "@conn"), (name, remainder, authority))
        name, remainder, _ = find_connection_reference("//@conn:prod/bucket/key")
        self.assertEqual(("prod", "/bucket/key"), (name, remainder))

    def test_reference_without_tail_targets_root(self):
        self.assertEqual(("prod", "/", ""), find_connection_reference("/@conn:prod"))

    def test_plain_paths_have_no_reference(self):
        self.assertEqual((None, "/bucket/key", ""), find_connection_reference("/bucket/key"))
        self.assertEqual((None, "/key", "bucket"), find_connection_reference("//bucket/key"))


class ResolveContextTests(unittest.TestCase):
    def test_plain_path_uses_defaults(self):
        defaults = AdapterSettings(default_region="eu-north-1", max_keys=50, use_https=False)

        context, canonical = resolve_context(BackendMode.S3, defaults, "\\bucket\\dir\\", None)

        self.assertEqual("/bucket/dir/", canonical)
        self.assertEqual("eu-north-1", context.region)
        self.assertIsNone(context.explicit_region)
        self.assertEqual(50, context.max_keys)
        self.assertFalse(context.use_https)
        self.assertFalse(context.has_credentials)

    def test_authority_path_folds_into_bucket(self):
        _context, canonical = resolve_context(BackendMode.S3, AdapterSettings(), "//bucket/key", None)

        self.assertEqual("/bucket/key", canonical)

    def test_connection_profile_is_applied(self):
        connections = FakeConnections(
            profiles={
                "prod": {
                    "pluginId": PLUGIN_ID_S3,
                    "host": "ap-southeast-2",
                    "userName": "AKIAEXAMPLE",
                    "extra": {"endpointOverride": "minio.local:9000", "useVirtualAddressing": False},
                }
            },
            secrets={"prod": "s3cr3t"},
        )

        context, canonical = resolve_context(
            BackendMode.S3, AdapterSettings(), "/@conn:prod/bucket/key", connections
        )

        self.assertEqual("/bucket/key", canonical)
        self.assertEqual("prod", context.connection_name)
        self.assertEqual("ap-southeast-2", context.region)
        self.assertEqual("ap-southeast-2", context.explicit_region)
        self.assertEqual("minio.local:9000", context.endpoint_override)
        self.assertFalse(context.use_virtual_addressing)
        self.assertEqual(("AKIAEXAMPLE", "s3cr3t"), (context.access_key_id, context.secret_access_key))

    def test_authority_connection_form_resolves_identically(self):
        connections = FakeConnections(profiles={"prod": {"pluginId": PLUGIN_ID_S3}})

        first = resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:prod/bucket/key", connections)
        second = resolve_context(BackendMode.S3, AdapterSettings(), "//@conn/prod/bucket/key", connections)

        self.assertEqual(first, second)

    def test_secret_is_not_fetched_when_not_requested(self):
        connections = FakeConnections(profiles={"prod": {"pluginId": PLUGIN_ID_S3, "userName": "AKIA"}})

        context, _ = resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:prod/b", connections, False)

        self.assertEqual("AKIA", context.access_key_id)
        self.assertIsNone(context.secret_access_key)
        self.assertEqual([], connections.secret_calls)

    def test_missing_secret_prompts(self):
        connections = FakeConnections(
            profiles={"prod": {"pluginId": PLUGIN_ID_S3, "userName": "AKIA"}}, prompt_answer="typed"
        )

        context, _ = resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:prod/b", connections)

        self.assertEqual("typed", context.secret_access_key)
        self.assertEqual([("prod", "password")], connections.prompts)

    def test_cancelled_prompt_is_distinct_outcome(self):
        connections = FakeConnections(profiles={"prod": {"pluginId": PLUGIN_ID_S3, "userName": "AKIA"}})

        with self.assertRaises(OperationCancelledError):
            resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:prod/b", connections)

    def test_empty_secret_fails_authentication(self):
        connections = FakeConnections(
            profiles={"prod": {"pluginId": PLUGIN_ID_S3, "userName": "AKIA"}}, secrets={"prod": ""}
        )

        with self.assertRaises(AuthenticationFailedError):
            resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:prod/b", connections)

    def test_plugin_mismatch_is_invalid_argument(self):
        connections = FakeConnections(profiles={"prod": {"pluginId": PLUGIN_ID_S3_TABLE}})

        with self.assertRaises(InvalidArgumentError):
            resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:prod/b", connections)

    def test_malformed_or_missing_profiles_are_data_corrupt(self):
        connections = FakeConnections(profiles={"broken": "{nope", "list": "[]", "bare": {"host": "x"}})

        for name in ("broken", "list", "bare", "missing"):
            with self.subTest(name=name), self.assertRaises(DataCorruptError):
                resolve_context(BackendMode.S3, AdapterSettings(), f"/@conn:{name}/b", connections)

    def test_reference_without_store_is_not_supported(self):
        with self.assertRaises(NotSupportedError):
            resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:prod/b", None)

    def test_empty_connection_name_is_invalid(self):
        with self.assertRaises(InvalidArgumentError):
            resolve_context(BackendMode.S3, AdapterSettings(), "/@conn:/b", FakeConnections())


class ClientKwargsTests(unittest.TestCase):
    def test_endpoint_scheme_overrides_https_flag(self):
        context = ResolvedContext(endpoint_override="http://localhost:9000/", use_https=True)

        kwargs = client_kwargs(context)

        self.assertEqual("http://localhost:9000", kwargs["endpoint_url"])
        self.assertFalse(kwargs["use_ssl"])

    def test_endpoint_without_scheme_follows_flag(self):
        context = ResolvedContext(endpoint_override="minio.local", use_https=False, use_virtual_addressing=False)

        kwargs = client_kwargs(context)

        self.assertEqual("http://minio.local", kwargs["endpoint_url"])
        self.assertEqual("path", kwargs["config"].s3["addressing_style"])

    def test_credentials_only_when_complete(self):
        partial = client_kwargs(ResolvedContext(access_key_id="AKIA"))
        full = client_kwargs(ResolvedContext(access_key_id="AKIA", secret_access_key="s"))

        self.assertNotIn("aws_access_key_id", partial)
        self.assertEqual("s", full["aws_secret_access_key"])
        self.assertEqual("us-east-1", full["region_name"])

    def test_table_client_uses_s3tables_service(self):
        created = []

        create_table_client(ResolvedContext(region="us-west-2"), lambda name, **kw: created.append((name, kw)))

        self.assertEqual("s3tables", created[0][0])
        self.assertEqual("us-west-2", created[0][1]["region_name"])


if __name__ == "__main__":
    unittest.main()
