"""Tests for outline_service.py: queue numbers and the outline workflow."""

import base64
from types import SimpleNamespace
from unittest.mock import MagicMock, patch

import pytest

import config
import outline_service
import storage_service
from db import PhotoSubmission
from errors import OutlineGenerationError

PHOTO = "data:image/jpeg;base64," + base64.b64encode(b"fake-jpeg").decode()


def _chunk(*parts):
  return SimpleNamespace(candidates=[SimpleNamespace(content=SimpleNamespace(parts=list(parts)))])


def _image_part(data=b"outline-png", mime="image/png"):
  return SimpleNamespace(inline_data=SimpleNamespace(data=data, mime_type=mime), text=None)


def _text_part(text):
  return SimpleNamespace(inline_data=None, text=text)


def _genai_client(chunks):
  client = MagicMock()
  client.models.generate_content_stream.return_value = iter(chunks)
  return client


# ---------------------------------------------------------------------------
# Queue numbers
# ---------------------------------------------------------------------------

class TestNormalizeQueueNumber:
  @pytest.mark.parametrize("value,expected", [
      ("10001", "10001"),
      (10001, "10001"),
      ("42", "00042"),
      (" 00042 ", "00042"),
      ("abc", None),
      ("", None),
      (None, None),
      ("123456", None),
      ("\u00b2", None),
      ("\u00b9\u00b2", None),
      (True, None),
  ])
  def test_forms(self, value, expected):
    assert outline_service.normalize_queue_number(value) == expected


class TestNextQueueNumber:
  def test_outline_path_starts_at_10001(self, db_session):
    assert outline_service.next_queue_number(db_session) == "10001"

  def test_save_path_starts_at_10000(self, db_session):
    assert outline_service.next_queue_number(
        db_session, start=config.SAVE_SUBMISSION_QUEUE_START,
    ) == "10000"

  def test_increments_highest(self, db_session, create_submission):
    create_submission("10005")
    create_submission("10002")
    assert outline_service.next_queue_number(db_session) == "10006"

  def test_zero_padded(self, db_session, create_submission):
    create_submission("00041")
    assert outline_service.next_queue_number(db_session) == "00042"

  def test_strictly_increasing_sequence(self, db_session):
    numbers = []
    for _ in range(5):
      number = outline_service.next_queue_number(db_session)
      db_session.add(PhotoSubmission(queue_number=number))
      db_session.commit()
      numbers.append(number)
    assert numbers == ["10001", "10002", "10003", "10004", "10005"]
    assert all(len(n) == 5 for n in numbers)

  def test_overflow_wraps_to_start(self, db_session, create_submission):
    create_submission("99999")
    assert outline_service.next_queue_number(db_session) == "10001"

  def test_store_failure_uses_time_fallback(self):
    broken = MagicMock()
    broken.query.side_effect = RuntimeError("db down")
    with patch("outline_service.time.time", return_value=1_700_000_123):
      number = outline_service.next_queue_number(broken)
    assert number == str(1_700_000_123 % 90000 + 10000)
    assert 10000 <= int(number) < 100000


# ---------------------------------------------------------------------------
# Image model
# ---------------------------------------------------------------------------

class TestGenerateOutlineImage:
  def test_returns_data_url_and_text(self):
    client = _genai_client([_chunk(_text_part("Here you go. ")), _chunk(_image_part())])
    with patch("outline_service.gcp_connection.get_genai_client", return_value=client):
      image, text = outline_service.generate_outline_image(PHOTO)

    assert image == "data:image/png;base64," + base64.b64encode(b"outline-png").decode()
    assert text == "Here you go. "
    kwargs = client.models.generate_content_stream.call_args.kwargs
    assert kwargs["model"] == config.OUTLINE_MODEL

  def test_extra_prompt_is_appended(self):
    client = _genai_client([_chunk(_image_part())])
    with patch("outline_service.gcp_connection.get_genai_client", return_value=client):
      outline_service.generate_outline_image(PHOTO, prompt="thicker lines")
    contents = client.models.generate_content_stream.call_args.kwargs["contents"]
    assert "thicker lines" in contents[0].parts[0].text

  def test_skips_empty_chunks(self):
    empty = SimpleNamespace(candidates=[])
    no_parts = SimpleNamespace(candidates=[SimpleNamespace(content=None)])
    client = _genai_client([empty, no_parts, _chunk(_image_part())])
    with patch("outline_service.gcp_connection.get_genai_client", return_value=client):
      image, _ = outline_service.generate_outline_image(PHOTO)
    assert image.startswith("data:image/png;base64,")

  def test_no_image_raises(self):
    client = _genai_client([_chunk(_text_part("I cannot draw that."))])
    with patch("outline_service.gcp_connection.get_genai_client", return_value=client):
      with pytest.raises(OutlineGenerationError) as exc_info:
        outline_service.generate_outline_image(PHOTO)
    assert exc_info.value.text_response == "I cannot draw that."


# ---------------------------------------------------------------------------
# Workflow
# ---------------------------------------------------------------------------

class TestCreateOutlineSubmission:
  def test_persists_submission(self, db_session):
    with patch("outline_service.generate_outline_image", return_value=("data:image/png;base64,AAA", "")), \
         patch("outline_service.storage_service.upload_asset",
               side_effect=["https://storage.googleapis.com/test-bucket/photo.jpg",
                            "https://storage.googleapis.com/test-bucket/outline.png"]):
      result = outline_service.create_outline_submission(db_session, PHOTO, user_email="u@example.com")

    assert result["queueNumber"] == "10001"
    assert result["outlineUrl"] == "https://storage.googleapis.com/test-bucket/outline.png"
    assert result["originalPhotoUrl"] == "https://storage.googleapis.com/test-bucket/photo.jpg"
    assert result["textResponse"] is None

    sub = db_session.query(PhotoSubmission).one()
    assert sub.id == result["submissionId"]
    assert sub.status == "completed"
    assert sub.user_email == "u@example.com"

  def test_upload_failures_fall_back_to_original_refs(self, db_session):
    outline = "data:image/png;base64,AAA"
    with patch("outline_service.generate_outline_image", return_value=(outline, "")), \
         patch("outline_service.storage_service.upload_asset",
               side_effect=storage_service.StorageUploadError("bucket gone")):
      result = outline_service.create_outline_submission(db_session, PHOTO)

    assert result["originalPhotoUrl"] == PHOTO
    assert result["outlineUrl"] == outline

  def test_hosted_photo_not_reuploaded(self, db_session):
    hosted = "https://storage.googleapis.com/test-bucket/family-art-app/original-photos/a.jpg"
    with patch("outline_service.generate_outline_image", return_value=("data:image/png;base64,AAA", "")), \
         patch("outline_service.storage_service.upload_asset", return_value="https://x/outline.png") as upload:
      result = outline_service.create_outline_submission(db_session, hosted)

    assert result["originalPhotoUrl"] == hosted
    assert upload.call_count == 1  # outline only

  def test_generation_failure_writes_nothing(self, db_session):
    with patch("outline_service.generate_outline_image",
               side_effect=OutlineGenerationError("no image")), \
         patch("outline_service.storage_service.upload_asset", return_value="https://x/p.jpg"):
      with pytest.raises(OutlineGenerationError):
        outline_service.create_outline_submission(db_session, PHOTO)
    assert db_session.query(PhotoSubmission).count() == 0


class TestSaveSubmission:
  def test_saves_with_10000_start(self, db_session):
    with patch("outline_service.storage_service.upload_asset",
               side_effect=["https://x/photo.jpg", "https://x/outline.png"]):
      sub = outline_service.save_submission(db_session, PHOTO, "data:image/png;base64,AAA")
    assert sub.queue_number == "10000"
    assert sub.original_photo_url == "https://x/photo.jpg"
    assert sub.generated_outline_url == "https://x/outline.png"

  def test_upload_failure_is_fatal(self, db_session):
    with patch("outline_service.storage_service.upload_asset",
               side_effect=storage_service.StorageUploadError("nope")):
      with pytest.raises(storage_service.StorageUploadError):
        outline_service.save_submission(db_session, PHOTO, "data:image/png;base64,AAA")
    assert db_session.query(PhotoSubmission).count() == 0
