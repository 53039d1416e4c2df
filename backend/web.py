# web.py — Server-rendered page helpers (templates, flash messages, redirects)
import os
from typing import Optional

from fastapi import Request
from fastapi.responses import RedirectResponse
from fastapi.templating import Jinja2Templates

TEMPLATES_DIR = os.path.join(os.path.dirname(os.path.abspath(__file__)), "templates")

templates = Jinja2Templates(directory=TEMPLATES_DIR)


def flash(request: Request, message: str, category: str = "status") -> None:
    """Queue a one-shot message for the next rendered page"""
    request.session["flash"] = {"category": category, "message": message}


def pop_flash(request: Request) -> Optional[dict]:
    return request.session.pop("flash", None)


def redirect(url: str, request: Optional[Request] = None, message: Optional[str] = None,
             category: str = "status") -> RedirectResponse:
    if request is not None and message:
        flash(request, message, category)
    return RedirectResponse(url=url, status_code=303)


def render(request: Request, template: str, **context):
    context.setdefault("flash", pop_flash(request))
    return templates.TemplateResponse(request, template, context)
