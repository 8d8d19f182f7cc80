from fastapi import APIRouter

from ophthexam.api.v1.admin import router as admin_router
from ophthexam.api.v1.auth import router as auth_router
from ophthexam.api.v1.exams import router as exams_router
from ophthexam.api.v1.feedback import router as feedback_router
from ophthexam.api.v1.functions import router as functions_router
from ophthexam.api.v1.patients import router as patients_router
from ophthexam.api.v1.reports import router as reports_router
from ophthexam.api.v1.shared_reports import router as shared_reports_router

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(auth_router)
api_router.include_router(admin_router)
api_router.include_router(patients_router)
api_router.include_router(exams_router)
api_router.include_router(reports_router)
api_router.include_router(feedback_router)
api_router.include_router(shared_reports_router)

FUNCTIONS_PREFIX = "/functions/v1"

functions_api_router = APIRouter(prefix=FUNCTIONS_PREFIX)
functions_api_router.include_router(functions_router)
