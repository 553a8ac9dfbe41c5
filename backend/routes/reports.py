"""
Report routes — template listing plus templated and custom report downloads.
"""

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import Response

from core.reports import list_templates
from routes.datasets import actor_from, filter_from, service_for

router = APIRouter()


def _download(content: bytes, media_type: str, filename: str) -> Response:
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.post("/templates")
async def report_templates(payload: dict):
    """Templates the actor's role may generate."""
    actor = actor_from(payload)
    return {
        "templates": list_templates(actor),
        "custom_reports": actor.capability.custom_reports,
    }


@router.post("/generate")
async def generate_report(request: Request, payload: dict):
    svc = service_for(request, payload)
    content, media_type, filename = await svc.generate_report(
        actor_from(payload),
        template_id=payload.get("template", "summary"),
        fmt=payload.get("format", "document"),
        language=payload.get("language", "en"),
        filt=filter_from(payload),
    )
    return _download(content, media_type, filename)


@router.post("/custom")
async def generate_custom_report(request: Request, payload: dict):
    sections = payload.get("sections")
    if not sections:
        raise HTTPException(400, "No report sections selected.")
    svc = service_for(request, payload)
    content, media_type, filename = await svc.generate_custom_report(
        actor_from(payload),
        sections,
        fmt=payload.get("format", "document"),
        language=payload.get("language", "en"),
        filt=filter_from(payload),
    )
    return _download(content, media_type, filename)
