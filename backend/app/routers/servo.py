# backend/app/routers/servo.py
import logging

from fastapi import APIRouter, Depends

from .. import schemas
from ..device_client import DeviceClient, get_device_client

logger = logging.getLogger(__name__)
router = APIRouter(
    prefix="/api/servo",
    tags=["Briefcase Servo"]
)


@router.post("/angle", response_model=schemas.ServoResponse)
async def update_servo_angle(
    command: schemas.ServoCommand,
    device: DeviceClient = Depends(get_device_client),
):
    angle = await device.set_servo_angle(command.angle)
    logger.info(f"Servo angle set to {angle} by user {command.userID} (REMOTE)")
    return {
        "success": True,
        "message": f"Servo angle set to {angle} by user {command.userID}",
        "angle": angle,
    }


@router.get("/status")
async def get_servo_status(device: DeviceClient = Depends(get_device_client)):
    return {"angle": device.current_angle}
