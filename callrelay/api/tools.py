"""Business tool endpoints called by the agent's tool executor."""
import logging
from typing import Literal

from fastapi import APIRouter, Depends, HTTPException
from pydantic import BaseModel, ConfigDict, Field

from callrelay.core.dependencies import get_telephony_service, get_verification_store
from callrelay.services.telephony.twilio_service import TelephonyError, TwilioTelephonyService
from callrelay.services.verification.store import VerificationStore

router = APIRouter(prefix="/tools")
logger = logging.getLogger(__name__)

PrescriptionStatus = Literal["ready", "in progress", "delayed", "unable to complete"]


class StatusUpdateRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    customer_reference: str = Field(alias="customerReference")
    status: PrescriptionStatus


class VerifySendRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    from_number: str = Field(alias="from", min_length=1)


class VerifyCodeRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    code: str = Field(min_length=1)
    from_number: str = Field(alias="from", min_length=1)


@router.post("/status-update")
async def status_update(body: StatusUpdateRequest):
    """Record the prescription status reported on the call."""
    logger.info(f"[TOOL STATUS] {body.customer_reference}: {body.status}")
    return {"Customer Reference": body.customer_reference, "Status": body.status}


@router.post("/verify-send")
async def verify_send(
    body: VerifySendRequest,
    store: VerificationStore = Depends(get_verification_store),
    telephony: TwilioTelephonyService = Depends(get_telephony_service),
):
    """Send a verification code by SMS."""
    code = store.issue(body.from_number)
    try:
        await telephony.send_sms(body.from_number, f"Your verification code is: {code}")
    except TelephonyError as e:
        raise HTTPException(status_code=502, detail=str(e))
    return {"sent": True}


@router.post("/verify-code")
async def verify_code(
    body: VerifyCodeRequest,
    store: VerificationStore = Depends(get_verification_store),
):
    """Check a code read back on the call."""
    verified = store.verify(body.from_number, body.code)
    logger.info(f"[TOOL VERIFY] Code for {body.from_number} verified: {verified}")
    return {"verified": verified}
