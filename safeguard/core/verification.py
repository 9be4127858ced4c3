"""
Verification rules for SafeGuard.

This module centralizes the community verification threshold so that
optimistic updates compute the same speculative values the backend
trigger will eventually write.
"""

from datetime import datetime, timezone
from typing import Optional

from .models import IncidentRecord, VerificationType

# 검증 완료로 간주되는 confirm 횟수
VERIFICATION_THRESHOLD = 3

# 검증 횟수에 반영되는 검증 유형 (dispute / additional_info는 제외)
COUNTED_VERIFICATION_TYPES = frozenset({"confirm"})

def is_verified_count(count: int) -> bool:
    return count >= VERIFICATION_THRESHOLD

def counts_toward_threshold(verification_type: VerificationType) -> bool:
    return verification_type in COUNTED_VERIFICATION_TYPES

def apply_verification(
    record: IncidentRecord,
    verification_type: VerificationType,
    *,
    now: Optional[str] = None
) -> IncidentRecord:
    """
    검증 액션 후 예상되는 레코드를 계산합니다 (서버 트리거와 동일한 규칙).

    Args:
        record: 현재 레코드
        verification_type: 검증 유형
        now: updated_at에 기록할 시각 (None이면 현재 UTC)

    Returns:
        새 레코드 (원본은 변경되지 않음)
    """
    if not counts_toward_threshold(verification_type):
        return record

    count = record.verification_count + 1
    return record.model_copy(update={
        "verification_count": count,
        # 이미 검증된 레코드는 검증 해제되지 않는다
        "is_verified": record.is_verified or is_verified_count(count),
        "updated_at": now or datetime.now(timezone.utc).isoformat(),
    })

def apply_confirmation(record: IncidentRecord, *, now: Optional[str] = None) -> IncidentRecord:
    return apply_verification(record, "confirm", now=now)
