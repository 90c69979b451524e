"""
Entry export endpoints.

    GET  /api/v1/form-entries/<id>/export?format=html|pdf|excel
    POST /api/v1/exports/consolidated   {template_id, entry_ids, format}

"pdf" returns the print-ready HTML document; the browser print dialog
produces the PDF file.  Content is built in memory, never in temp files.
"""

import logging

from flask import Blueprint, Response, current_app, request

from formcapture.auth import get_current_user, require_auth
from formcapture.blueprints import register_error_handlers
from formcapture.services import export_service
from formcapture.utils.errors import E, api_error
from formcapture.utils.helpers import parse_int_list

logger = logging.getLogger(__name__)

export_bp = Blueprint("export", __name__, url_prefix="/api/v1")
register_error_handlers(export_bp)


def _file_response(content, mimetype, filename, inline=False):
    disposition = "inline" if inline else "attachment"
    return Response(
        content,
        mimetype=mimetype,
        headers={"Content-Disposition": f'{disposition}; filename="{filename}"'},
    )


@export_bp.route("/form-entries/<int:entry_id>/export", methods=["GET"])
@require_auth
def export_entry(entry_id):
    fmt = request.args.get("format", "html")
    content, mimetype, filename = export_service.export_entry(
        entry_id, fmt, get_current_user(),
        company_name=current_app.config.get("EXPORT_COMPANY_NAME", ""),
    )
    inline = request.args.get("inline", "0") in ("1", "true")
    return _file_response(content, mimetype, filename, inline=inline)


@export_bp.route("/exports/consolidated", methods=["POST"])
@require_auth
def export_consolidated():
    body = request.get_json(silent=True) or {}
    template_id = body.get("template_id")
    if isinstance(template_id, bool) or not isinstance(template_id, int):
        return api_error(E.VALIDATION_REQUIRED, "template_id (integer) is required")
    try:
        entry_ids = parse_int_list(body.get("entry_ids"))
    except (TypeError, ValueError):
        return api_error(E.VALIDATION_INVALID, "entry_ids must be a list of integers")
    if not entry_ids:
        return api_error(E.VALIDATION_REQUIRED, "entry_ids must not be empty")
    if not body.get("format"):
        return api_error(E.VALIDATION_REQUIRED, "format is required (html, pdf or excel)")

    content, mimetype, filename = export_service.export_consolidated(
        template_id, entry_ids, body["format"], get_current_user(),
        company_name=current_app.config.get("EXPORT_COMPANY_NAME", ""),
    )
    return _file_response(content, mimetype, filename)
