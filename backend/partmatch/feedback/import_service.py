"""Training data CSV import service"""

import csv
import logging
from datetime import datetime, timezone
from io import StringIO
from typing import Optional
from uuid import UUID

import chardet

from ..config import Settings, get_settings
from ..matching.candidates import CatalogSnapshot, IndexedEntry
from ..matching.normalizer import normalize
from ..matching.ports import CatalogProvider, MatchQuality, TrainingExampleUpsert, TrainingStore
from ..matching.similarity import clamp01, trigram_similarity
from ..matching.training_index import TrainingCorpus
from ..observability.metrics import training_import_rows_total
from .schemas import TrainingImportError, TrainingImportResult

logger = logging.getLogger(__name__)

REQUIRED_COLUMN = "pdf_description"
CATALOG_COLUMNS = ("catalog_sku", "catalog_description")
DEFAULT_QUALITY = MatchQuality.GOOD
DEFAULT_CONFIDENCE = 0.8


class TrainingImportService:
    """Seed the training corpus from known-good matches in a CSV file.

    Expected columns:
        pdf_description (required): text as it appears on incoming documents
        catalog_sku / catalog_description (one required): the matching entry
        match_quality (optional): excellent|good|fair|poor, default good
        confidence (optional): 0.0-1.0, default 0.8
    """

    def __init__(
        self,
        store: TrainingStore,
        catalog: CatalogProvider,
        org_id: UUID,
        settings: Optional[Settings] = None,
        corpus: Optional[TrainingCorpus] = None,
    ):
        self.store = store
        self.catalog = catalog
        self.org_id = org_id
        self.settings = settings or get_settings()
        self.corpus = corpus

    def import_from_csv(self, file_bytes: bytes, imported_by: Optional[UUID] = None) -> TrainingImportResult:
        """Import training examples from CSV file bytes

        Args:
            file_bytes: Raw CSV file bytes
            imported_by: User recorded as approver of the imported examples

        Returns:
            TrainingImportResult with counts and row errors

        Raises:
            ValueError: If the header lacks the required columns
            DependencyUnavailableError: If catalog or training store is unavailable
        """
        # Detect encoding
        detected = chardet.detect(file_bytes)
        encoding = detected['encoding'] or 'utf-8'

        # Decode to text
        try:
            text = file_bytes.decode(encoding)
        except (UnicodeDecodeError, LookupError):
            # Fallback to utf-8 with error handling
            text = file_bytes.decode('utf-8', errors='replace')

        reader = csv.DictReader(StringIO(text.lstrip('\ufeff')))
        headers = [(h or '').strip().lower() for h in (reader.fieldnames or [])]
        if REQUIRED_COLUMN not in headers or not any(c in headers for c in CATALOG_COLUMNS):
            raise ValueError(
                f"CSV must contain '{REQUIRED_COLUMN}' and one of: {', '.join(CATALOG_COLUMNS)}"
            )
        reader.fieldnames = headers

        snapshot = self.catalog.get_snapshot(self.org_id)
        approved_at = datetime.now(timezone.utc)

        result = TrainingImportResult(
            total_rows=0,
            imported_count=0,
            skipped_count=0,
            errors=[]
        )

        try:
            for row_num, row in enumerate(reader, start=2):  # Start at 2 (row 1 is header)
                result.total_rows += 1
                description = (row.get(REQUIRED_COLUMN) or '').strip()

                try:
                    payload = self._build_payload(row, description, snapshot, imported_by, approved_at)
                except ValueError as e:
                    result.skipped_count += 1
                    result.errors.append(TrainingImportError(
                        row=row_num,
                        pdf_description=description or None,
                        error=str(e)
                    ))
                    training_import_rows_total.labels(status="skipped").inc()
                    continue

                self.store.upsert_training_example(self.org_id, payload)
                result.imported_count += 1
                training_import_rows_total.labels(status="imported").inc()
        finally:
            if self.corpus is not None and result.imported_count:
                self.corpus.invalidate(self.org_id)

        logger.info(
            f"Training import for org {self.org_id}: {result.imported_count} imported, "
            f"{result.skipped_count} skipped of {result.total_rows} rows"
        )
        return result

    def _build_payload(
        self,
        row: dict,
        description: str,
        snapshot: CatalogSnapshot,
        imported_by: Optional[UUID],
        approved_at: datetime,
    ) -> TrainingExampleUpsert:
        """Validate one row and resolve its catalog entry

        Raises:
            ValueError: If the row is invalid or no catalog entry matches
        """
        normalized = normalize(description)
        if not normalized:
            raise ValueError(f"{REQUIRED_COLUMN} is required")

        entry = self.find_entry(
            snapshot,
            (row.get('catalog_sku') or '').strip(),
            (row.get('catalog_description') or '').strip(),
        )
        if entry is None:
            raise ValueError("No catalog entry matches catalog_sku / catalog_description")

        return TrainingExampleUpsert(
            normalized_text=normalized,
            source_text=description,
            catalog_entry_id=entry.id,
            quality=self.parse_quality(row.get('match_quality')),
            confidence=self.parse_confidence(row.get('confidence')),
            approved_by=imported_by,
            approved_at=approved_at,
        )

    def find_entry(self, snapshot: CatalogSnapshot, sku: str, description: str) -> Optional[IndexedEntry]:
        """Exact SKU, then exact name, then best name similarity above the minimum."""
        norm_sku = normalize(sku)
        norm_description = normalize(description)

        if norm_sku:
            for entry in snapshot:
                if entry.norm_sku == norm_sku:
                    return entry
        if not norm_description:
            return None

        for entry in snapshot:
            if entry.norm_name == norm_description:
                return entry

        best, best_score = None, 0.0
        for entry_id, _ in sorted(snapshot.trigram_prefilter(norm_description).items()):
            entry = snapshot.get(entry_id)
            score = trigram_similarity(norm_description, entry.norm_name)
            if score > best_score:
                best, best_score = entry, score
        if best_score >= self.settings.TRAINING_IMPORT_MIN_NAME_SIMILARITY:
            return best
        return None

    @staticmethod
    def parse_quality(value: Optional[str]) -> MatchQuality:
        try:
            return MatchQuality((value or '').strip().lower())
        except ValueError:
            return DEFAULT_QUALITY

    @staticmethod
    def parse_confidence(value: Optional[str]) -> float:
        try:
            return clamp01(float((value or '').strip()))
        except ValueError:
            return DEFAULT_CONFIDENCE
