import json
import unittest

from fakes import MODIFIED, FakeS3Client, FakeTablesClient, RecordingFactory, client_error
from s3_vfs.cache import BucketRegionCache, CatalogBucketIdentityCache
from s3_vfs.context import ResolvedContext
from s3_vfs.errors import AccessDeniedError, InvalidArgumentError, ItemNotFoundError
from s3_vfs.listing import CatalogListing, ObjectStorageListing, parse_location, strip_table_suffix


def object_listing(client, factory=None):
    factory = factory or RecordingFactory(s3=client)
    return ObjectStorageListing(factory, BucketRegionCache())


class ParseLocationTests(unittest.TestCase):
    def test_root_and_prefixes(self):
        self.assertTrue(parse_location("/").is_root)
        location = parse_location("/bucket/a/b")
        self.assertEqual(("bucket", "a/b/", False), (location.bucket, location.key_or_prefix, location.is_root))
        self.assertEqual("", parse_location("/bucket").key_or_prefix)

    def test_strip_table_suffix_is_case_insensitive(self):
        self.assertEqual("orders", strip_table_suffix("orders.TABLE.json"))
        self.assertEqual("orders", strip_table_suffix("orders"))


class ObjectListingTests(unittest.TestCase):
    def test_lists_pseudo_directories_and_files(self):
        client = FakeS3Client(["data"])
        client.add("data", "logs/", b"")
        client.add("data", "logs/a.txt", b"hello")
        client.add("data", "logs/2024/jan.txt", b"x")
        client.add("data", "logs/2024/feb.txt", b"y")
        client.add("data", "other.txt", b"z")
        listing = object_listing(client)

        entries = listing.list_objects(ResolvedContext(), parse_location("/data/logs"))

        by_name = {entry.name: entry for entry in entries}
        self.assertEqual({"2024", "a.txt"}, set(by_name))
        self.assertTrue(by_name["2024"].is_directory)
        self.assertEqual(5, by_name["a.txt"].size_bytes)
        self.assertEqual(MODIFIED, by_name["a.txt"].last_write_time)
        kwargs = client.calls_for("list_objects_v2")[0]
        self.assertEqual("logs/", kwargs["Prefix"])
        self.assertEqual("/", kwargs["Delimiter"])

    def test_pagination_exhausts_continuation_tokens(self):
        client = FakeS3Client(["bulk"])
        for index in range(2500):
            client.add("bulk", f"file-{index:05d}.bin", b"1")
        listing = object_listing(client)

        entries = listing.list_objects(ResolvedContext(max_keys=1000), parse_location("/bulk"))

        self.assertEqual(2500, len(entries))
        calls = client.calls_for("list_objects_v2")
        self.assertEqual(3, len(calls))
        self.assertEqual([None, "1000", "2000"], [call.get("ContinuationToken") for call in calls])
        self.assertTrue(all(call["MaxKeys"] == 1000 for call in calls))

    def test_page_size_follows_context(self):
        client = FakeS3Client(["bulk"])
        for index in range(5):
            client.add("bulk", f"k{index}", b"")
        listing = object_listing(client)

        entries = listing.list_objects(ResolvedContext(max_keys=2), parse_location("/bulk"))

        self.assertEqual(5, len(entries))
        self.assertEqual(3, len(client.calls_for("list_objects_v2")))

    def test_backend_errors_are_translated(self):
        client = FakeS3Client(["data"])
        client.errors["list_objects_v2"] = client_error("AccessDenied", 403, "ListObjectsV2")
        listing = object_listing(client)

        with self.assertLogs("s3_vfs.context", level="ERROR") as logs:
            with self.assertRaises(AccessDeniedError):
                listing.list_objects(ResolvedContext(), parse_location("/data"))
        self.assertIn("ListObjectsV2", logs.output[0])
        self.assertIn("requestId='req-1'", logs.output[0])

    def test_find_object_requires_exact_key(self):
        client = FakeS3Client(["data"])
        client.add("data", "a.txt.bak", b"123")
        listing = object_listing(client)

        self.assertIsNone(listing.find_object(ResolvedContext(), "data", "a.txt"))
        client.add("data", "a.txt", b"12")
        summary = listing.find_object(ResolvedContext(), "data", "a.txt")
        self.assertEqual(("a.txt", 2), (summary.key, summary.size_bytes))

    def test_prefix_has_children(self):
        client = FakeS3Client(["data"])
        client.add("data", "a/b", b"")
        listing = object_listing(client)

        self.assertTrue(listing.prefix_has_children(ResolvedContext(), "data", "a"))
        self.assertFalse(listing.prefix_has_children(ResolvedContext(), "data", "b"))


class BucketListingTests(unittest.TestCase):
    def test_bucket_context_resolves_region_once(self):
        client = FakeS3Client(["eu-data"], locations={"eu-data": "EU"})
        factory = RecordingFactory(s3=client)
        listing = object_listing(client, factory)

        first = listing.bucket_context(ResolvedContext(), "eu-data")
        second = listing.bucket_context(ResolvedContext(), "eu-data")

        self.assertEqual("eu-west-1", first.region)
        self.assertEqual(first, second)
        self.assertEqual(1, len(client.calls_for("get_bucket_location")))

    def test_bucket_context_keeps_explicit_region_and_endpoint(self):
        client = FakeS3Client(["data"])
        listing = object_listing(client)

        explicit = ResolvedContext(region="sa-east-1", explicit_region="sa-east-1")
        custom = ResolvedContext(endpoint_override="http://localhost:9000")

        self.assertIs(explicit, listing.bucket_context(explicit, "data"))
        self.assertIs(custom, listing.bucket_context(custom, "data"))
        self.assertEqual([], client.calls_for("get_bucket_location"))

    def test_root_listing_filters_by_explicit_region(self):
        client = FakeS3Client(
            ["alpha", "beta", "gamma"],
            locations={"alpha": "eu-west-1", "beta": None, "gamma": "EU"},
        )
        factory = RecordingFactory(s3=client)
        listing = object_listing(client, factory)
        context = ResolvedContext(region="eu-west-1", explicit_region="EU-West-1")

        entries = listing.list_buckets_for_connection(context)

        self.assertEqual(["alpha", "gamma"], [entry.name for entry in entries])
        self.assertEqual(1, len(factory.created))
        self.assertTrue(all(entry.is_directory for entry in entries))
        self.assertEqual(MODIFIED, entries[0].creation_time)

    def test_root_listing_skips_filter_for_custom_endpoint(self):
        client = FakeS3Client(["alpha", "beta"])
        listing = object_listing(client)
        context = ResolvedContext(explicit_region="eu-west-1", endpoint_override="minio:9000")

        entries = listing.list_buckets_for_connection(context)

        self.assertEqual(2, len(entries))
        self.assertEqual([], client.calls_for("get_bucket_location"))

    def test_root_listing_skips_buckets_whose_region_lookup_fails(self):
        client = FakeS3Client(["alpha"], locations={"alpha": "eu-west-1"})
        client.errors["get_bucket_location"] = client_error("AccessDenied", 403, "GetBucketLocation")
        listing = object_listing(client)

        with self.assertLogs("s3_vfs.context", level="ERROR"):
            entries = listing.list_buckets_for_connection(ResolvedContext(explicit_region="eu-west-1"))

        self.assertEqual([], entries)


class CatalogListingTests(unittest.TestCase):
    def setUp(self):
        self.tables = FakeTablesClient(
            buckets={"analytics": "arn:aws:s3tables:us-east-1:1:bucket/analytics"},
            namespaces={"arn:aws:s3tables:us-east-1:1:bucket/analytics": [["sales"], ["ops", "eu"]]},
            tables={
                ("arn:aws:s3tables:us-east-1:1:bucket/analytics", "sales"): [
                    {"name": "orders", "createdAt": MODIFIED, "modifiedAt": MODIFIED},
                    {"name": "refunds", "createdAt": MODIFIED, "modifiedAt": MODIFIED},
                ]
            },
        )
        self.factory = RecordingFactory(s3tables=self.tables)
        self.listing = CatalogListing(self.factory, CatalogBucketIdentityCache())

    def test_three_levels(self):
        context = ResolvedContext()

        buckets = self.listing.list_directory(context, "/")
        namespaces = self.listing.list_directory(context, "/analytics")
        tables = self.listing.list_directory(context, "/analytics/sales")

        self.assertEqual(["analytics"], [entry.name for entry in buckets])
        self.assertEqual(["sales", "ops.eu"], [entry.name for entry in namespaces])
        self.assertEqual(["orders.table.json", "refunds.table.json"], [entry.name for entry in tables])
        self.assertFalse(tables[0].is_directory)
        # The root listing filled the identity cache.
        self.assertEqual(1, len(self.tables.calls_for("list_table_buckets")))
        self.assertEqual("s3tables", self.factory.created[0][0])

    def test_depth_beyond_tables_is_invalid(self):
        with self.assertRaises(InvalidArgumentError):
            self.listing.list_directory(ResolvedContext(), "/analytics/sales/orders.table.json")

    def test_unknown_bucket_is_not_found(self):
        with self.assertRaises(ItemNotFoundError):
            self.listing.list_directory(ResolvedContext(), "/missing")

    def test_catalog_pagination(self):
        self.tables.page_size = 1

        namespaces = self.listing.list_namespaces(ResolvedContext(), "analytics")

        self.assertEqual(2, len(namespaces))
        self.assertEqual(2, len(self.tables.calls_for("list_namespaces")))

    def test_table_document(self):
        document = json.loads(self.listing.table_document(ResolvedContext(), "analytics", "sales", "orders"))

        self.assertEqual("orders", document["name"])
        self.assertEqual(["sales"], document["namespace"])
        self.assertEqual(MODIFIED.isoformat(), document["createdAt"])
        self.assertTrue(document["tableArn"].endswith("/table/orders"))


if __name__ == "__main__":
    unittest.main()
