from __future__ import annotations

from flask import Blueprint, Response, g, jsonify, request

from app.steward.db import db_session
from app.steward.errors import ApiError
from app.steward.models import Church, User
from app.steward.modules.statements.service import (
    delete_statement,
    generate_statements,
    get_statement,
    list_statements,
    send_statements,
    statement_filename,
    statement_pdf_bytes,
    statement_to_dict,
)
from app.steward.rbac import require_permission
from app.steward.utils import get_json_body, parse_int

bp = Blueprint("statements", __name__)


def _current_user() -> User:
    u = getattr(g, "current_user", None)
    if not u:
        raise RuntimeError("No current user")
    return u


def _church() -> Church:
    c = getattr(g, "church", None)
    if c is None:
        raise RuntimeError("No tenant church")
    return c


@bp.get("/giving-statements")
@require_permission("church.view")
def statements_list():
    s = db_session()
    year = parse_int(request.args.get("year"))
    return jsonify({"statements": [statement_to_dict(st) for st in list_statements(s, _church().id, year=year)]})


@bp.post("/giving-statements/generate")
@require_permission("statements.manage")
def statements_generate():
    s = db_session()
    outcome = generate_statements(s, _church(), get_json_body(), user=_current_user())
    if outcome.preview_pdf is not None:
        return Response(
            outcome.preview_pdf,
            mimetype="application/pdf",
            headers={"Content-Disposition": f'inline; filename="{outcome.preview_filename}"'},
        )
    return jsonify(outcome.body)


@bp.post("/giving-statements/send")
@require_permission("statements.manage")
def statements_send():
    ids = get_json_body().get("statementIds")
    if not isinstance(ids, list) or not ids:
        raise ApiError("statementIds array is required")
    s = db_session()
    return jsonify(send_statements(s, _church(), ids, user=_current_user()))


@bp.get("/giving-statements/<int:statement_id>")
@require_permission("church.view")
def statement_detail(statement_id: int):
    s = db_session()
    st = get_statement(s, _church().id, statement_id)
    return jsonify({"statement": statement_to_dict(st)})


@bp.get("/giving-statements/<int:statement_id>/download")
@require_permission("church.view")
def statement_download(statement_id: int):
    s = db_session()
    church = _church()
    st = get_statement(s, church.id, statement_id)
    pdf_bytes = statement_pdf_bytes(s, church, st)
    s.commit()
    return Response(
        pdf_bytes,
        mimetype="application/pdf",
        headers={"Content-Disposition": f'attachment; filename="{statement_filename(st)}"'},
    )


@bp.delete("/giving-statements/<int:statement_id>")
@require_permission("statements.manage")
def statement_delete(statement_id: int):
    s = db_session()
    st = get_statement(s, _church().id, statement_id)
    delete_statement(s, st, user=_current_user())
    s.commit()
    return jsonify({"success": True})
