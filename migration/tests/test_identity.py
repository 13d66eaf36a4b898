import unittest
import uuid

from migration.identity import derive, derive_natural


class DeriveTests(unittest.TestCase):
    def test_same_input_same_id(self):
        first = derive("pillar_check_in", "abc123")
        second = derive("pillar_check_in", "abc123")
        self.assertEqual(first, second)

    def test_namespaces_do_not_collide(self):
        self.assertNotEqual(
            derive("pillar_check_in", "abc123"),
            derive("pillar_score", "abc123"),
        )

    def test_different_legacy_ids_differ(self):
        ids = {derive("pillar_check_in", f"doc-{i}") for i in range(200)}
        self.assertEqual(len(ids), 200)

    def test_uuid_shape_with_version_and_variant_bits(self):
        value = uuid.UUID(derive("ai_message", "m-1"))
        self.assertEqual(value.version, 5)
        self.assertEqual(value.variant, uuid.RFC_4122)
        self.assertEqual(str(value), derive("ai_message", "m-1"))

    def test_rejects_empty_input(self):
        with self.assertRaises(ValueError):
            derive("", "abc")
        with self.assertRaises(ValueError):
            derive("pillar_check_in", "")

    def test_natural_key_parts_are_ordered(self):
        self.assertEqual(
            derive_natural("pillar_score", "u1", "sleep"),
            derive("pillar_score", "u1:sleep"),
        )
        self.assertNotEqual(
            derive_natural("pillar_score", "u1", "sleep"),
            derive_natural("pillar_score", "sleep", "u1"),
        )

    def test_natural_key_needs_parts(self):
        with self.assertRaises(ValueError):
            derive_natural("pillar_score")


if __name__ == "__main__":
    unittest.main()
