"""Built-in relation schema for document sharing.

Folders nest through ``parent``; documents sit in at most one folder.
Read and write inherit down the folder tree, sharing and ownership
transfer do not.
"""

from __future__ import annotations

from typing import Any

# ── Subject labels ──────────────────────────────────────

USER = "user"
FOLDER = "folder"
GROUP_MEMBERS = "group#member"

# ── Document sharing model ──────────────────────────────

DOCUMENT_SCHEMA: dict[str, Any] = {
    "types": {
        "user": {"relations": {}},
        "group": {
            "relations": {
                "member": {"direct": [USER, GROUP_MEMBERS]},
            },
        },
        "folder": {
            "relations": {
                "owner": {"direct": [USER, GROUP_MEMBERS]},
                "parent": {"direct": [FOLDER]},
                "viewer": {
                    "direct": [USER, GROUP_MEMBERS],
                    "computed": ["owner"],
                    "inherited": [{"via": "parent", "relation": "viewer"}],
                },
                "can_read": {"computed": ["viewer"]},
                "can_write": {
                    "computed": ["owner"],
                    "inherited": [{"via": "parent", "relation": "can_write"}],
                },
                "can_create_file": {
                    "computed": ["owner"],
                    "inherited": [{"via": "parent", "relation": "can_create_file"}],
                },
                "can_share": {"computed": ["owner"]},
                "can_change_owner": {"computed": ["owner"]},
            },
        },
        "doc": {
            "relations": {
                "owner": {"direct": [USER]},
                "viewer": {"direct": [USER, GROUP_MEMBERS]},
                "parent": {"direct": [FOLDER]},
                "can_read": {
                    "computed": ["owner", "viewer"],
                    "inherited": [{"via": "parent", "relation": "viewer"}],
                },
                "can_write": {
                    "computed": ["owner"],
                    "inherited": [{"via": "parent", "relation": "can_write"}],
                },
                # Not inherited from folder ownership.
                "can_share": {"computed": ["owner"]},
                "can_change_owner": {"computed": ["owner"]},
            },
        },
    },
}


__all__ = ["DOCUMENT_SCHEMA", "FOLDER", "GROUP_MEMBERS", "USER"]
