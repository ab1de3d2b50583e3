from urllib.parse import quote

from fastapi import APIRouter, Depends, File, Response, UploadFile, status

from grievance_engine.api.deps import get_actor, get_lifecycle
from grievance_engine.attachments import AttachmentMetadata
from grievance_engine.lifecycle import Actor, GrievanceLifecycle
from grievance_engine.schemas import AttachmentRead

router = APIRouter()


@router.post("", response_model=AttachmentRead, status_code=status.HTTP_201_CREATED)
def upload_attachment(
    file: UploadFile = File(...),
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    """Store an unclaimed upload; link it later by passing its id on creation."""
    # One byte past the limit is enough for the size check to reject it.
    content = file.file.read(lifecycle.attachments.max_bytes + 1)
    metadata = AttachmentMetadata(
        filename=file.filename or "",
        mime_type=file.content_type or "",
    )
    record = lifecycle.upload_attachment(content, metadata, actor.actor_id)
    return AttachmentRead.model_validate(record)


@router.get("/{attachment_id}/content")
def download_attachment(
    attachment_id: int,
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    record, content = lifecycle.open_attachment(attachment_id, actor)
    return Response(
        content=content,
        media_type=record.mime_type,
        headers={"Content-Disposition": f"attachment; filename*=UTF-8''{quote(record.original_filename)}"},
    )


@router.delete("/{attachment_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_attachment(
    attachment_id: int,
    actor: Actor = Depends(get_actor),
    lifecycle: GrievanceLifecycle = Depends(get_lifecycle),
):
    lifecycle.remove_attachment(attachment_id, actor)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
