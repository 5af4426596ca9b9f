from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.responses import FileResponse

from app.server.middleware import get_services
from app.services.registry import Services
from app.utils.errors import StorageError

router = APIRouter()


@router.get("/files/{path:path}", tags=["Files"])
async def get_file(
    path: str,
    expires: int | None = Query(default=None),
    token: str | None = Query(default=None),
    services: Services = Depends(get_services),
):
    blob_store = services.blob_store
    if not blob_store.verify_token(path, expires, token):
        raise HTTPException(status_code=403, detail="Invalid token")

    try:
        file_path = blob_store.resolve(path)
    except StorageError as e:
        raise HTTPException(status_code=404, detail="File not found") from e
    if not file_path.is_file():
        raise HTTPException(status_code=404, detail="File not found")
    return FileResponse(file_path)
