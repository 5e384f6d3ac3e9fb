"""Tests for conversation entities and the project collection codec."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
import json
import unittest
from unittest.mock import patch
from uuid import uuid4

from pydantic import ValidationError

from handybot.exceptions import PersistenceFormatError
from handybot.models import (
    PROJECTS_NAMESPACE,
    Attachment,
    AttachmentType,
    Message,
    Project,
    decode_projects,
    encode_projects,
)


def _attachment(name: str = "a.jpg") -> Attachment:
    return Attachment(filename=name, local_path=f"/tmp/attachments/{name}")


class MessageTests(unittest.TestCase):
    def test_content_is_trimmed(self) -> None:
        message = Message(content="  leaky faucet \n", is_user=True)
        self.assertEqual(message.content, "leaky faucet")
        self.assertEqual(message.role, "user")
        self.assertEqual(Message(content="ok", is_user=False).role, "assistant")

    def test_message_is_immutable(self) -> None:
        message = Message(content="hello", is_user=True)
        with self.assertRaises(ValidationError):
            message.content = "changed"  # type: ignore[misc]

    def test_attachments_keep_order(self) -> None:
        first, second = _attachment("1.jpg"), _attachment("2.jpg")
        message = Message(content="photos", is_user=True, attachments=(first, second))
        self.assertEqual([a.filename for a in message.attachments], ["1.jpg", "2.jpg"])
        self.assertIs(first.type, AttachmentType.IMAGE)


class ProjectTests(unittest.TestCase):
    def test_title_is_trimmed_and_history_starts_empty(self) -> None:
        project = Project(title="  Squeaky door  ")
        self.assertEqual(project.title, "Squeaky door")
        self.assertEqual(project.messages, [])
        self.assertIsNone(project.last_message)

    def test_equality_and_hash_use_id_only(self) -> None:
        project = Project(title="Deck stain")
        renamed = project.model_copy(update={"title": "Something else"})
        self.assertEqual(project, renamed)
        self.assertEqual(hash(project), hash(renamed))
        self.assertNotEqual(project, Project(title="Deck stain"))
        self.assertEqual(len({project, renamed}), 1)

    def test_add_message_appends_and_advances_last_updated(self) -> None:
        project = Project(title="Gutter")
        before = project.last_updated
        message = Message(content="It overflows", is_user=True)

        project.add_message(message)

        self.assertEqual(project.messages, [message])
        self.assertGreater(project.last_updated, before)

    def test_last_updated_never_moves_backwards(self) -> None:
        project = Project(title="Clock skew")
        future = datetime.now(UTC) + timedelta(hours=1)
        project.last_updated = future
        project.add_message(Message(content="x", is_user=True))
        self.assertGreater(project.last_updated, future)

    def test_touch_is_strictly_increasing_on_a_frozen_clock(self) -> None:
        project = Project(title="Frozen")
        frozen = project.last_updated
        with patch("handybot.models.utcnow", return_value=frozen):
            project.touch()
            first = project.last_updated
            project.touch()
        self.assertGreater(first, frozen)
        self.assertGreater(project.last_updated, first)

    def test_update_title_trims_and_bumps(self) -> None:
        project = Project(title="Old")
        before = project.last_updated
        project.update_title("  New title ")
        self.assertEqual(project.title, "New title")
        self.assertGreater(project.last_updated, before)


class CodecTests(unittest.TestCase):
    def test_round_trip_preserves_every_field_and_order(self) -> None:
        project = Project(title="Cracked tile")
        project.add_message(
            Message(
                content="See photos",
                is_user=True,
                attachments=(_attachment("1.jpg"), _attachment("2.jpg")),
            )
        )
        project.add_message(Message(content="Use grout.", is_user=False))
        project.add_message(Message(content="Which kind?", is_user=True))
        other = Project(title="Loose railing")

        decoded = decode_projects(encode_projects([project, other]))

        self.assertEqual([p.id for p in decoded], [project.id, other.id])
        self.assertEqual(decoded[0].model_dump(), project.model_dump())
        self.assertEqual(decoded[1].model_dump(), other.model_dump())
        self.assertEqual(
            [m.content for m in decoded[0].messages],
            ["See photos", "Use grout.", "Which kind?"],
        )

    def test_encoded_collection_is_keyed_by_namespace(self) -> None:
        payload = json.loads(encode_projects([Project(title="Fence")]))
        self.assertEqual(list(payload), [PROJECTS_NAMESPACE])
        self.assertEqual(payload[PROJECTS_NAMESPACE][0]["title"], "Fence")

    def test_missing_namespace_decodes_to_empty_list(self) -> None:
        self.assertEqual(decode_projects(b"{}"), [])

    def test_invalid_payloads_raise_format_error(self) -> None:
        for raw in (
            b"not json{{",
            b"[1, 2, 3]",
            json.dumps({PROJECTS_NAMESPACE: [{"id": str(uuid4())}]}).encode(),
        ):
            with self.subTest(raw=raw):
                with self.assertRaises(PersistenceFormatError):
                    decode_projects(raw)


if __name__ == "__main__":
    unittest.main()
