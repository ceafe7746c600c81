from dataclasses import dataclass, field
from functools import reduce


@dataclass
class ImportResult:
    processed: int = 0
    created: int = 0
    updated: int = 0
    variants_created: int = 0
    errors: list = field(default_factory=list)
    warnings: list = field(default_factory=list)
    success: bool = True

    def merge(self, other: "ImportResult") -> "ImportResult":
        return ImportResult(
            processed=self.processed + other.processed,
            created=self.created + other.created,
            updated=self.updated + other.updated,
            variants_created=self.variants_created + other.variants_created,
            errors=self.errors + other.errors,
            warnings=self.warnings + other.warnings,
            success=self.success and other.success,
        )

    def as_dict(self) -> dict:
        return {
            "processed": self.processed,
            "created": self.created,
            "updated": self.updated,
            "variantsCreated": self.variants_created,
            "errors": list(self.errors),
            "warnings": list(self.warnings),
            "success": self.success,
        }


def fold_results(results) -> ImportResult:
    """파일 순서대로 합친다. 개수는 더하고 목록은 이어 붙인다."""
    return reduce(ImportResult.merge, results, ImportResult())


@dataclass(frozen=True)
class CSVImportOptions:
    validate_only: bool = False
    update_existing: bool = False
    skip_invalid: bool = False
    category_mapping: dict = field(default_factory=dict)


@dataclass(frozen=True)
class WPImportOptions:
    default_currency: str = "RUB"
    update_existing: bool = False
    skip_invalid: bool = False
    auto_create_categories: bool = True
    create_all_variants: bool = True
    category_mapping: dict = field(default_factory=dict)


class ImportAborted(Exception):
    """skip_invalid=False 에서 행 오류가 나면 트랜잭션 전체를 되돌리기 위해 던진다."""
