# lifecycle_system/services/eligibility_service.py
"""
Eligibility evaluator.

ASSOCIATE: completed 1:1 mentoring meeting AND completed intake survey.
MANAGER: over the trailing window (whole months, ending with last month):
    - salesVolume >= threshold for the member's range
    - insuredCount >= threshold
    - memberReferrals >= threshold (approved only)
    - associateReferrals >= threshold (approved only)

The aggregator fan-out runs concurrently under a single timeout.
"""
import asyncio
import logging
from decimal import Decimal
from typing import Dict, Any, Optional

from sqlalchemy.orm import Session

from config import Config
from lifecycle_system.config.roles import get_manager_thresholds, get_sales_threshold
from lifecycle_system.errors import ValidationError, EvaluationTimeoutError
from lifecycle_system.services.activity_service import ActivityService, trailingWindow
from lifecycle_system.utils.members import get_member
from lifecycle_system.utils.time_machine import TimeMachine, timeMachine
from models.enums import Role, ReferralType

logger = logging.getLogger(__name__)


def parseRole(value) -> Role:
    """Role enum from enum or name; ValidationError otherwise."""
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).upper())
    except ValueError:
        raise ValidationError(
            f"Unknown role: {value!r}",
            details={"allowed": [r.value for r in Role]}
        )


def _criterion(current, target) -> Dict[str, Any]:
    if target:
        percentage = min(100.0, float(current) / float(target) * 100)
    else:
        percentage = 100.0
    return {
        "current": current,
        "target": target,
        "met": current >= target,
        "percentage": round(percentage, 2),
    }


class EligibilityService:
    """Read-only promotion eligibility evaluation."""

    def __init__(
            self,
            session: Session,
            activity: Optional[ActivityService] = None,
            clock: Optional[TimeMachine] = None,
            timeoutSeconds: Optional[float] = None
    ):
        self.session = session
        self.activity = activity or ActivityService(session)
        self.clock = clock or timeMachine
        self.timeoutSeconds = timeoutSeconds

    async def evaluateEligibility(self, memberId: int, targetRole) -> Dict[str, Any]:
        """
        Evaluate eligibility of a member for targetRole.

        Returns:
            EligibilityReport dict: memberId, targetRole, isEligible,
            criteria {name: {current, target, met, percentage}}, metrics,
            window (MANAGER only), evaluatedAt

        Raises:
            ValidationError: targetRole is not ASSOCIATE or MANAGER
            NotFoundError: Unknown member
            EvaluationTimeoutError: Aggregators did not finish in time
        """
        targetRole = parseRole(targetRole)
        if targetRole not in (Role.ASSOCIATE, Role.MANAGER):
            raise ValidationError(f"No eligibility criteria for {targetRole.value}")

        member = get_member(self.session, memberId)

        timeout = self.timeoutSeconds
        if timeout is None:
            timeout = Config.get(Config.ELIGIBILITY_TIMEOUT_SECONDS, 8)

        try:
            if targetRole == Role.ASSOCIATE:
                report = await asyncio.wait_for(self._evaluateAssociate(memberId), timeout=timeout)
            else:
                report = await asyncio.wait_for(
                    self._evaluateManager(memberId, member.rangeNumber or 1),
                    timeout=timeout
                )
        except asyncio.TimeoutError:
            logger.warning(
                f"Eligibility evaluation timed out: member={memberId}, "
                f"target={targetRole.value}, timeout={timeout}s"
            )
            raise EvaluationTimeoutError(
                f"Eligibility evaluation timed out after {timeout}s",
                details={"memberId": memberId, "targetRole": targetRole.value}
            )

        report.update({
            "memberId": memberId,
            "targetRole": targetRole.value,
            "isEligible": all(c["met"] for c in report["criteria"].values()),
            "evaluatedAt": self.clock.now,
        })

        logger.debug(
            f"Eligibility member={memberId} target={targetRole.value}: "
            f"isEligible={report['isEligible']}"
        )
        return report

    async def _evaluateAssociate(self, memberId: int) -> Dict[str, Any]:
        meetings, surveyDone = await asyncio.gather(
            self.activity.countCompletedMentoringMeetings(memberId),
            self.activity.hasCompletedIntakeSurvey(memberId)
        )

        return {
            "criteria": {
                "mentoringMeetingCompleted": _criterion(1 if meetings > 0 else 0, 1),
                "intakeSurveyCompleted": _criterion(1 if surveyDone else 0, 1),
            },
            "metrics": {},
        }

    async def _evaluateManager(self, memberId: int, rangeNumber: int) -> Dict[str, Any]:
        windowMonths = Config.get(Config.ELIGIBILITY_WINDOW_MONTHS, 6)
        window = trailingWindow(self.clock.now, windowMonths)
        thresholds = get_manager_thresholds()

        sales, insured, memberRefs, associateRefs, avgReward = await asyncio.gather(
            self.activity.getSalesVolume(memberId, window["months"]),
            self.activity.getInsuredCount(memberId, window["months"]),
            self.activity.countApprovedReferrals(memberId, ReferralType.MEMBER, window["start"], window["end"]),
            self.activity.countApprovedReferrals(memberId, ReferralType.ASSOCIATE, window["start"], window["end"]),
            self.activity.getAverageMonthlyReward(memberId, window["months"])
        )

        return {
            "criteria": {
                "salesVolume": _criterion(Decimal(sales), get_sales_threshold(rangeNumber)),
                "insuredCount": _criterion(insured, thresholds["insuredCount"]),
                "memberReferrals": _criterion(memberRefs, thresholds["memberReferrals"]),
                "associateReferrals": _criterion(associateRefs, thresholds["associateReferrals"]),
            },
            # Informational only, not part of isEligible
            "metrics": {
                "averageMonthlyReward": avgReward,
                "rangeNumber": rangeNumber,
            },
            "window": {
                "from": window["months"][0],
                "to": window["months"][-1],
            },
        }
