"""
Character routes.

Handles:
- DELETE /api/characters/<id>          - Delete; answers with
                                         requiresConfirmation + usedInBooks when
                                         the character appears in books
- DELETE /api/characters/<id>?force=1  - Delete anyway
"""

from flask import Blueprint, request

from routes.common import get_service, login_required
from logging_config import get_logger


# Module logger
logger = get_logger(__name__)

characters_bp = Blueprint("characters", __name__)

_TRUE_VALUES = ("1", "true", "yes")


@characters_bp.route("/api/characters/<character_id>", methods=["DELETE"])
@login_required
def delete_character(character_id: str):
    force = request.args.get("force", "").lower() in _TRUE_VALUES
    api_client = get_service("API_CLIENT")

    body = api_client.delete_character(character_id, force=force)
    logger.info(f"Character {character_id} deleted{' (forced)' if force else ''}")
    return {"success": True, "message": body.get("message", "Character deleted")}
