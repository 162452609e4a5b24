import threading
from datetime import date

import pytest

from conftest import make_delivery
from domain.models import ImageFile
from services import delivery_form_service
from services.delivery_form_service import (
    DELIVERY_NOTE_PATH,
    DRAFT,
    GOODS_PHOTO_PATH,
    SUBMIT_FAILED,
    DeliveryFormWorkflow,
    DraftLockedError,
    suggest_batch_number,
)
from services.ocr_service import OcrError
from services.upload_service import UploadExhausted

TODAY = date(2024, 6, 7)


class FakeUploader:
    def __init__(self, fail_names=()):
        self.fail_names = set(fail_names)
        self.uploads = []

    def upload(self, file, path, on_progress=None, cancel_event=None):
        self.uploads.append((file.name, path))
        if file.name in self.fail_names:
            raise UploadExhausted(3)
        return f"https://files/{path}/{file.name}"


def _image(name="lieferschein.jpg"):
    # not decodable: compression hands the file through unchanged
    return ImageFile(name=name, content=b"raw-bytes", mime_type="image/jpeg")


@pytest.fixture
def uploader():
    return FakeUploader()


def _workflow(store, uploader, notifications, recognizer=lambda content, lang: ""):
    return DeliveryFormWorkflow(
        store,
        uploader,
        recognizer=recognizer,
        notify=notifications,
        today=lambda: TODAY,
    )


# ---------------------------------------------------------------------------
# Batch number suggestion
# ---------------------------------------------------------------------------

def test_suggestion_for_empty_day(fake_store):
    assert suggest_batch_number(fake_store, TODAY) == "0607-01"


def test_suggestion_counts_existing_deliveries(fake_store):
    fake_store.deliveries = [make_delivery(f"d{i}", day=TODAY) for i in range(11)]
    fake_store.deliveries.append(make_delivery("other", day=date(2024, 6, 8)))
    assert suggest_batch_number(fake_store, TODAY) == "0607-12"


def test_suggestion_falls_back_when_lookup_fails(fake_store):
    fake_store.deliveries = [make_delivery("d1", day=TODAY)]
    fake_store.fail_lookup = True
    assert suggest_batch_number(fake_store, TODAY) == "0607-01"


def test_changing_arrival_date_recomputes_suggestion(fake_store, uploader, notifications):
    fake_store.deliveries = [make_delivery("d1", day=date(2024, 12, 24))]
    wf = _workflow(fake_store, uploader, notifications)
    assert wf.draft.suggested_batch_number == "0607-01"

    wf.set_arrival_date(date(2024, 12, 24))

    assert wf.draft.suggested_batch_number == "1224-02"


# ---------------------------------------------------------------------------
# Uploads and OCR
# ---------------------------------------------------------------------------

def test_delivery_note_ocr_fills_empty_batch_number(fake_store, uploader, notifications):
    wf = _workflow(
        fake_store, uploader, notifications,
        recognizer=lambda content, lang: "Lieferschein Chargennummer: AB12-9",
    )

    url = wf.add_delivery_note(_image())

    assert url == f"https://files/{DELIVERY_NOTE_PATH}/lieferschein.jpg"
    assert wf.draft.batch_number == "AB12-9"
    assert wf.draft.recognized_text == "Lieferschein Chargennummer: AB12-9"
    assert "Chargennummer automatisch erkannt" in notifications.messages("info")


def test_ocr_does_not_override_user_batch_number(fake_store, uploader, notifications):
    wf = _workflow(
        fake_store, uploader, notifications,
        recognizer=lambda content, lang: "Chargennummer: AB12-9",
    )
    wf.set_batch_number("MY-01")

    wf.add_delivery_note(_image())

    assert wf.draft.batch_number == "MY-01"


def test_first_ocr_hit_wins_and_text_accumulates(fake_store, uploader, notifications):
    texts = iter(["Charge: FIRST", "Charge: SECOND"])
    wf = _workflow(fake_store, uploader, notifications, recognizer=lambda content, lang: next(texts))

    wf.add_delivery_note(_image("a.jpg"))
    wf.add_delivery_note(_image("b.jpg"))

    assert wf.draft.batch_number == "FIRST"
    assert wf.draft.recognized_text == "Charge: FIRST\nCharge: SECOND"


def test_ocr_failure_still_uploads(fake_store, uploader, notifications):
    def broken(content, lang):
        raise OcrError("no engine")

    wf = _workflow(fake_store, uploader, notifications, recognizer=broken)

    url = wf.add_delivery_note(_image())

    assert url is not None
    assert wf.draft.recognized_text == ""
    assert any("Texterkennung" in m for m in notifications.messages("error"))


def test_goods_photos_skip_ocr(fake_store, uploader, notifications):
    calls = []
    wf = _workflow(fake_store, uploader, notifications, recognizer=lambda content, lang: calls.append(content) or "")

    wf.add_goods_photo(_image("kiste.jpg"))

    assert calls == []
    assert wf.draft.goods_photo_urls == [f"https://files/{GOODS_PHOTO_PATH}/kiste.jpg"]


def test_invalid_file_is_rejected_before_upload(fake_store, uploader, notifications):
    wf = _workflow(fake_store, uploader, notifications)

    url = wf.add_goods_photo(ImageFile("liste.pdf", b"%PDF", "application/pdf"))

    assert url is None
    assert uploader.uploads == []
    assert notifications.messages("error") == [
        "Ungültiges Dateiformat: Bitte nur Bilder hochladen (JPG, PNG, etc.)"
    ]


def test_failed_upload_keeps_siblings(fake_store, notifications):
    uploader = FakeUploader(fail_names={"b.jpg"})
    wf = _workflow(fake_store, uploader, notifications)

    urls = wf.add_goods_photos([_image("a.jpg"), _image("b.jpg"), _image("c.jpg")])

    assert sorted(urls) == sorted(wf.draft.goods_photo_urls)
    assert len(urls) == 2
    assert any("Fehler beim Upload" in m for m in notifications.messages("error"))
    assert wf.uploads_in_flight == 0


def test_parallel_uploads_keep_completion_order(fake_store, notifications):
    release_first = threading.Event()

    class SlowFirst(FakeUploader):
        def upload(self, file, path, on_progress=None, cancel_event=None):
            if file.name == "slow.jpg":
                release_first.wait(timeout=5)
            url = super().upload(file, path, on_progress)
            if file.name == "fast.jpg":
                release_first.set()
            return url

    wf = _workflow(fake_store, SlowFirst(), notifications)

    urls = wf.add_goods_photos([_image("slow.jpg"), _image("fast.jpg")])

    assert [u.rsplit("/", 1)[1] for u in urls] == ["fast.jpg", "slow.jpg"]
    assert wf.draft.goods_photo_urls == urls


def test_remove_uploaded_image(fake_store, uploader, notifications):
    wf = _workflow(fake_store, uploader, notifications)
    url = wf.add_delivery_note(_image())

    wf.remove_delivery_note(url)

    assert wf.draft.delivery_note_urls == []


# ---------------------------------------------------------------------------
# Submission
# ---------------------------------------------------------------------------

def test_submit_requires_confirmation(fake_store, uploader, notifications):
    wf = _workflow(fake_store, uploader, notifications)
    wf.set_supplier("s1")

    assert wf.submit() is None
    assert fake_store.inserted == []
    assert wf.state == DRAFT


def test_submit_requires_supplier(fake_store, uploader, notifications):
    wf = _workflow(fake_store, uploader, notifications)

    assert wf.submit(confirmed=True) is None
    assert fake_store.inserted == []


def test_submit_blocked_while_upload_in_flight(fake_store, notifications):
    started = threading.Event()
    release = threading.Event()

    class BlockingUploader(FakeUploader):
        def upload(self, file, path, on_progress=None, cancel_event=None):
            started.set()
            release.wait(timeout=5)
            return super().upload(file, path, on_progress)

    wf = _workflow(fake_store, BlockingUploader(), notifications)
    wf.set_supplier("s1")

    worker = threading.Thread(target=wf.add_goods_photo, args=(_image(),))
    worker.start()
    assert started.wait(timeout=5)

    try:
        assert wf.submit(confirmed=True) is None
        assert "Bitte warten Sie, bis alle Bilder hochgeladen sind." in notifications.messages("error")
    finally:
        release.set()
        worker.join(timeout=5)

    created = wf.submit(confirmed=True)
    assert created is not None
    assert created.goods_photo_urls == [f"https://files/{GOODS_PHOTO_PATH}/lieferschein.jpg"]


def test_successful_submit_creates_record_and_resets_draft(fake_store, uploader, notifications):
    wf = _workflow(
        fake_store, uploader, notifications,
        recognizer=lambda content, lang: "Charge: L-77",
    )
    wf.set_supplier("s1")
    wf.set_notes("  Bio Äpfel  ")
    wf.add_delivery_note(_image("note.jpg"))
    wf.add_goods_photo(_image("kiste.jpg"))

    created = wf.submit(confirmed=True)

    assert created.id == "d1"
    assert created.supplier_id == "s1"
    assert created.arrival_date == TODAY
    assert created.batch_number == "L-77"
    assert created.notes == "Bio Äpfel"
    assert created.recognized_text == "Charge: L-77"
    assert created.delivery_note_urls == [f"https://files/{DELIVERY_NOTE_PATH}/note.jpg"]

    # fresh draft with the next number for today
    assert wf.state == DRAFT
    assert wf.draft.supplier_id is None
    assert wf.draft.batch_number is None
    assert wf.draft.delivery_note_urls == []
    assert wf.draft.recognized_text == ""
    assert wf.draft.suggested_batch_number == "0607-02"


def test_submit_uses_suggestion_when_no_batch_number_set(fake_store, uploader, notifications):
    wf = _workflow(fake_store, uploader, notifications)
    wf.set_supplier("s1")

    created = wf.submit(confirmed=True)

    assert created.batch_number == "0607-01"


def test_failed_submit_keeps_draft(fake_store, uploader, notifications):
    fake_store.fail_insert = True
    wf = _workflow(fake_store, uploader, notifications)
    wf.set_supplier("s1")
    wf.set_notes("Kiste beschädigt")

    assert wf.submit(confirmed=True) is None
    assert wf.state == SUBMIT_FAILED
    assert wf.draft.notes == "Kiste beschädigt"
    assert any("insert failed" in m for m in notifications.messages("error"))

    fake_store.fail_insert = False
    assert wf.submit(confirmed=True) is not None


def test_draft_is_locked_while_submitting(fake_store, uploader, notifications):
    wf = _workflow(fake_store, uploader, notifications)
    wf.state = delivery_form_service.SUBMIT_PENDING

    with pytest.raises(DraftLockedError):
        wf.set_arrival_date(date(2024, 6, 8))


def test_unexpected_error_skips_only_that_file(fake_store, uploader, notifications, monkeypatch):
    real_compress = delivery_form_service.compress_image

    def compress(file):
        if file.name == "bad.jpg":
            raise RuntimeError("decoder crashed")
        return real_compress(file)

    monkeypatch.setattr(delivery_form_service, "compress_image", compress)
    wf = _workflow(fake_store, uploader, notifications)

    urls = wf.add_goods_photos([_image("a.jpg"), _image("bad.jpg"), _image("c.jpg")])

    assert sorted(u.rsplit("/", 1)[1] for u in urls) == ["a.jpg", "c.jpg"]
    assert any("bad.jpg" in m for m in notifications.messages("error"))
    assert wf.uploads_in_flight == 0


def test_batch_upload_reports_progress_per_file(fake_store, notifications):
    class ProgressUploader(FakeUploader):
        def upload(self, file, path, on_progress=None, cancel_event=None):
            on_progress(50.0)
            on_progress(100.0)
            return super().upload(file, path, on_progress, cancel_event)

    progress = []
    initialized = []
    wf = _workflow(fake_store, ProgressUploader(), notifications)

    wf.add_goods_photos(
        [_image("a.jpg"), _image("b.jpg")],
        on_progress=lambda name, pct: progress.append((name, pct)),
        thread_initializer=lambda: initialized.append(threading.current_thread().name),
    )

    assert sorted(progress) == [("a.jpg", 50.0), ("a.jpg", 100.0), ("b.jpg", 50.0), ("b.jpg", 100.0)]
    assert initialized


def test_cancel_uploads_reaches_the_uploader_and_reset_rearms(fake_store, notifications):
    seen = []

    class CancelAware(FakeUploader):
        def upload(self, file, path, on_progress=None, cancel_event=None):
            seen.append(cancel_event)
            return super().upload(file, path, on_progress, cancel_event)

    wf = _workflow(fake_store, CancelAware(), notifications)
    wf.cancel_uploads()
    wf.add_goods_photo(_image())

    assert seen[0].is_set()

    wf.reset()
    wf.add_goods_photo(_image())

    assert not seen[1].is_set()
