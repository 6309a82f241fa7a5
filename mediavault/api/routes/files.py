"""
File lookup by logical path.

Files are addressed as ``year/month/branch/filename``; the record is stored
under the name ``{year}_{month}_{branch}_{filename}``.
"""

from fastapi import APIRouter

from ..dependencies import StorageServiceDep
from .storage import FileInfoResponse

router = APIRouter()


@router.get(
    "/by-path/{path:path}",
    response_model=FileInfoResponse,
    summary="Get file by path",
    description="Look up a visible file by year/month/branch/filename",
)
async def get_file_by_path(path: str, service: StorageServiceDep) -> FileInfoResponse:
    record = await service.get_file_by_path(path)
    return FileInfoResponse.from_record(record)
