# services/delivery_form_service.py
import logging
import threading
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import date
from functools import partial
from typing import Callable, Iterable, List, Optional

from domain.models import DeliveryDraft, DeliveryRecord, ImageFile
from utils.formatting import batch_prefix
from utils.notifications import Notifier, log_notify
from .image_service import ImageValidationError, compress_image, validate_image_file
from .ocr_service import detect_batch_number, recognize_text
from .upload_service import ProgressCallback, UploadError

logger = logging.getLogger(__name__)

DRAFT = "draft"
SUBMIT_PENDING = "submit-pending"
SUBMITTED = "submitted"
SUBMIT_FAILED = "submit-failed"

DELIVERY_NOTE_PATH = "wareneingaenge/lieferscheine"
GOODS_PHOTO_PATH = "wareneingaenge/waren"

MAX_PARALLEL_UPLOADS = 3

# on_progress(filename, percent) for batch uploads
FileProgressCallback = Callable[[str, float], None]


class DraftLockedError(RuntimeError):
    pass


def suggest_batch_number(store, day: date) -> str:
    """
    "{MM}{DD}-{n}" where n is the number of deliveries already recorded
    for that day plus one, zero padded to two digits.
    Falls back to "{MM}{DD}-01" when the lookup fails.
    """
    prefix = batch_prefix(day)
    try:
        ok, msg, records = store.fetch_deliveries_for_date(day)
    except Exception as e:
        ok, msg, records = False, str(e), []

    if not ok:
        logger.error("Fehler beim Generieren der Chargennummer: %s", msg)
        return f"{prefix}-01"

    return f"{prefix}-{len(records) + 1:02d}"


class DeliveryFormWorkflow:
    """
    Holds the draft of one delivery entry: uploads delivery notes (with
    OCR) and goods photos, then creates the record in a single store call.

    draft -> submit-pending -> submitted (and back to a fresh draft)
                            -> submit-failed (draft kept for another try)

    Uploaded files whose draft is never submitted stay in storage.
    """

    def __init__(
            self,
            store,
            uploader,
            *,
            recognizer: Callable[[bytes, str], str] = recognize_text,
            notify: Notifier = log_notify,
            today: Callable[[], date] = date.today,
            max_parallel_uploads: int = MAX_PARALLEL_UPLOADS,
    ):
        self.store = store
        self.uploader = uploader
        self.recognizer = recognizer
        self.notify = notify
        self.today = today
        self.max_parallel_uploads = max_parallel_uploads

        self._lock = threading.Lock()
        self._uploads_in_flight = 0
        self._cancel_event = threading.Event()
        self.state = DRAFT
        self.draft = self._fresh_draft(today())

    # ------------------------------------------------------------------
    # Draft fields
    # ------------------------------------------------------------------

    def _fresh_draft(self, day: date) -> DeliveryDraft:
        return DeliveryDraft(
            arrival_date=day,
            suggested_batch_number=suggest_batch_number(self.store, day),
        )

    def _ensure_editable(self) -> None:
        if self.state == SUBMIT_PENDING:
            raise DraftLockedError("Wareneingang wird gerade gespeichert")

    @property
    def uploads_in_flight(self) -> int:
        with self._lock:
            return self._uploads_in_flight

    def set_supplier(self, supplier_id: Optional[str]) -> None:
        self._ensure_editable()
        self.draft.supplier_id = supplier_id or None

    def set_arrival_date(self, day: date) -> None:
        self._ensure_editable()
        if day == self.draft.arrival_date:
            return
        self.draft.arrival_date = day
        self.draft.suggested_batch_number = suggest_batch_number(self.store, day)

    def set_batch_number(self, batch_number: Optional[str]) -> None:
        self._ensure_editable()
        self.draft.batch_number = (batch_number or "").strip() or None

    def set_notes(self, notes: str) -> None:
        self._ensure_editable()
        self.draft.notes = notes or ""

    def remove_delivery_note(self, url: str) -> None:
        with self._lock:
            self.draft.delivery_note_urls = [u for u in self.draft.delivery_note_urls if u != url]

    def remove_goods_photo(self, url: str) -> None:
        with self._lock:
            self.draft.goods_photo_urls = [u for u in self.draft.goods_photo_urls if u != url]

    # ------------------------------------------------------------------
    # Images
    # ------------------------------------------------------------------

    def add_delivery_note(
            self,
            file: ImageFile,
            with_ocr: bool = True,
            on_progress: Optional[ProgressCallback] = None,
    ) -> Optional[str]:
        return self._process_image(file, DELIVERY_NOTE_PATH, with_ocr, on_progress)

    def add_goods_photo(
            self,
            file: ImageFile,
            on_progress: Optional[ProgressCallback] = None,
    ) -> Optional[str]:
        return self._process_image(file, GOODS_PHOTO_PATH, False, on_progress)

    def add_delivery_notes(
            self,
            files: Iterable[ImageFile],
            with_ocr: bool = True,
            on_progress: Optional[FileProgressCallback] = None,
            thread_initializer: Optional[Callable[[], None]] = None,
    ) -> List[str]:
        return self._process_many(files, DELIVERY_NOTE_PATH, with_ocr, on_progress, thread_initializer)

    def add_goods_photos(
            self,
            files: Iterable[ImageFile],
            on_progress: Optional[FileProgressCallback] = None,
            thread_initializer: Optional[Callable[[], None]] = None,
    ) -> List[str]:
        return self._process_many(files, GOODS_PHOTO_PATH, False, on_progress, thread_initializer)

    def cancel_uploads(self) -> None:
        """Abort running uploads at their next chunk boundary."""
        self._cancel_event.set()

    def _process_many(
            self,
            files: Iterable[ImageFile],
            path: str,
            with_ocr: bool,
            on_progress: Optional[FileProgressCallback],
            thread_initializer: Optional[Callable[[], None]],
    ) -> List[str]:
        """
        Upload several files with a bounded pool. URLs come back (and are
        added to the draft) in completion order. A file that fails is
        reported and skipped, the others carry on.

        on_progress(filename, percent) is called from the worker threads;
        thread_initializer runs once in each of them.
        """
        urls: List[str] = []
        with ThreadPoolExecutor(
                max_workers=self.max_parallel_uploads,
                initializer=thread_initializer,
        ) as pool:
            futures = {
                pool.submit(
                    self._process_image,
                    f,
                    path,
                    with_ocr,
                    partial(on_progress, f.name) if on_progress else None,
                ): f
                for f in files
            }
            for future in as_completed(futures):
                file = futures[future]
                try:
                    url = future.result()
                except Exception as e:
                    logger.exception("Processing %s failed", file.name)
                    self.notify(f"Fehler bei der Verarbeitung von {file.name}: {e}", "error")
                    continue
                if url:
                    urls.append(url)
        return urls

    def _process_image(
            self,
            file: ImageFile,
            path: str,
            with_ocr: bool,
            on_progress: Optional[ProgressCallback],
    ) -> Optional[str]:
        try:
            validate_image_file(file)
        except ImageValidationError as e:
            logger.warning("Rejected %s: %s", file.name, e)
            self.notify(f"{e.title}: {e.description}", "error")
            return None

        with self._lock:
            if self.state == SUBMIT_PENDING:
                self.notify("Wareneingang wird gerade gespeichert", "warning")
                return None
            self._uploads_in_flight += 1
            draft = self.draft
            cancel_event = self._cancel_event

        try:
            if with_ocr:
                self._run_ocr(file)

            compressed = compress_image(file)

            try:
                url = self.uploader.upload(compressed, path, on_progress, cancel_event)
            except UploadError as e:
                logger.error("Fehler beim Upload von %s: %s", file.name, e)
                self.notify(f"Fehler beim Upload: {e}", "error")
                return None

            with self._lock:
                if path == DELIVERY_NOTE_PATH:
                    draft.delivery_note_urls.append(url)
                else:
                    draft.goods_photo_urls.append(url)

            self.notify(
                "Lieferschein erfolgreich hochgeladen" if path == DELIVERY_NOTE_PATH
                else "Warenfoto erfolgreich hochgeladen",
                "success",
            )
            return url

        finally:
            with self._lock:
                self._uploads_in_flight -= 1

    def _run_ocr(self, file: ImageFile) -> None:
        try:
            text = self.recognizer(file.content, "de")
        except Exception as e:
            logger.warning("OCR failed for %s: %s", file.name, e)
            self.notify("Fehler bei der Texterkennung: Das Bild wird trotzdem hochgeladen", "error")
            return

        if text:
            self.apply_recognized_text(text)

    def apply_recognized_text(self, text: str) -> None:
        detected = detect_batch_number(text)
        with self._lock:
            prev = self.draft.recognized_text
            self.draft.recognized_text = f"{prev}\n{text}" if prev else text

            # first detection wins, a batch number already set is kept
            if detected and not self.draft.batch_number:
                self.draft.batch_number = detected
                detected_now = True
            else:
                detected_now = False

        if detected_now:
            self.notify("Chargennummer automatisch erkannt", "info")

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(self, confirmed: bool = False) -> Optional[DeliveryRecord]:
        """
        Create the delivery record. Needs an explicit confirmation and no
        upload may still be running.
        """
        with self._lock:
            if self._uploads_in_flight:
                blocked = "Bitte warten Sie, bis alle Bilder hochgeladen sind."
            elif self.state == SUBMIT_PENDING:
                blocked = "Wareneingang wird gerade gespeichert"
            elif not confirmed:
                blocked = "Bitte bestätigen Sie das Speichern des Wareneingangs."
            elif not self.draft.supplier_id:
                blocked = "Bitte einen Lieferanten wählen."
            else:
                blocked = None
                self.state = SUBMIT_PENDING

        if blocked:
            self.notify(blocked, "error")
            return None

        draft = self.draft
        record = DeliveryRecord(
            id=None,
            supplier_id=draft.supplier_id,
            arrival_date=draft.arrival_date,
            batch_number=draft.effective_batch_number or None,
            notes=draft.notes.strip() or None,
            delivery_note_urls=list(draft.delivery_note_urls),
            goods_photo_urls=list(draft.goods_photo_urls),
            recognized_text=draft.recognized_text or None,
        )

        try:
            ok, msg, created = self.store.insert_delivery(record)
        except Exception as e:
            ok, msg, created = False, str(e), None

        if not ok:
            self.state = SUBMIT_FAILED
            logger.error("Fehler beim Speichern des Wareneingangs: %s", msg)
            self.notify(f"Fehler beim Speichern des Wareneingangs: {msg}", "error")
            return None

        self.state = SUBMITTED
        self.notify("Wareneingang erfolgreich gespeichert", "success")
        self.reset()
        return created

    def reset(self) -> None:
        self._cancel_event = threading.Event()
        self.draft = self._fresh_draft(self.today())
        self.state = DRAFT
