from django.test import SimpleTestCase

from stock.services.references import IdRef, RefObject, IdObject, parse_reference, resolve_ref


class ResolveRefTests(SimpleTestCase):

    def test_accepted_shapes(self):
        self.assertEqual(resolve_ref("abc"), "abc")
        self.assertEqual(resolve_ref({"_ref": "abc"}), "abc")
        self.assertEqual(resolve_ref({"_id": "abc"}), "abc")

    def test_unusable_values_resolve_to_none(self):
        for value in ({}, None, 0, "", [], {"name": "abc"}, 42, ["abc"]):
            with self.subTest(value=value):
                self.assertIsNone(resolve_ref(value))

    def test_ref_key_wins_over_id_key(self):
        self.assertEqual(resolve_ref({"_ref": "a", "_id": "b"}), "a")

    def test_empty_ref_falls_back_to_id(self):
        self.assertEqual(resolve_ref({"_ref": "", "_id": "b"}), "b")


class ParseReferenceTests(SimpleTestCase):

    def test_tags_each_shape(self):
        self.assertEqual(parse_reference("abc"), IdRef("abc"))
        self.assertEqual(parse_reference({"_ref": "abc"}), RefObject("abc"))
        self.assertEqual(parse_reference({"_id": "abc"}), IdObject("abc"))
        self.assertIsNone(parse_reference({}))
