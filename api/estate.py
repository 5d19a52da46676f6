"""Pure helpers over a planner's records as seen by an executor.

Nothing here touches the database; callers pass rows in.
"""

from __future__ import annotations

from typing import Any, Dict, Iterable, List, Optional

JsonDict = Dict[str, Any]


CERTIFICATE_CONTENT_TYPES = {"application/pdf", "image/jpeg", "image/png", "image/heic"}

FALLBACK_WILL_TEMPLATE = (
    "This is the last will and testament of {name}. I hereby designate [Executor Name] as the "
    "executor of my estate. I direct that all my just debts and funeral expenses be paid as soon "
    "as practicable after my death. I give, devise, and bequeath all of my property, both real and "
    "personal, to my beneficiaries as outlined in the attached documents."
)

OUTREACH_BODY_TEMPLATE = (
    "Dear {name},\n\n"
    "I am writing to inform you of the passing of {planner}. As the designated executor of their "
    "estate, I need to notify you of this passing and request information about next steps "
    "regarding {topic} matters.\n\n"
    "Please let me know what documentation you require to proceed with the necessary account "
    "closures, transfers, or other required actions. I can provide a certified copy of the death "
    "certificate and any other documentation you may need.\n\n"
    "I would appreciate your guidance on the next steps and any forms that need to be completed.\n\n"
    "Thank you for your assistance during this difficult time.\n\n"
    "Sincerely,\n"
    "{signature}\n"
    "Executor of the Estate"
)


def planner_display_name(planner_id: str, profile: Optional[JsonDict] = None) -> str:
    profile = profile or {}
    full_name = (profile.get("full_name") or "").strip()
    if full_name:
        return full_name
    email = (profile.get("email") or "").strip()
    if email and "@" in email:
        return email.split("@", 1)[0]
    return f"Planner {(planner_id or '')[:8]}"


def will_text(will: Optional[JsonDict], wishes: List[JsonDict], planner_name: str) -> JsonDict:
    """Text an executor reviews: will content, first wish, or the fallback template."""
    content = ((will or {}).get("content") or "").strip()
    if content:
        return {"source": "will", "content": content}
    if wishes:
        first = (wishes[0].get("content") or "").strip()
        if first:
            return {"source": "wishes", "content": first}
    return {"source": "template", "content": FALLBACK_WILL_TEMPLATE.format(name=planner_name)}


def asset_categories(assets: Iterable[JsonDict]) -> List[str]:
    """["all", *distinct types in first-seen order]."""
    out = ["all"]
    for asset in assets:
        t = asset.get("type")
        if t and t not in out:
            out.append(t)
    return out


def filter_assets(assets: List[JsonDict], asset_type: Optional[str]) -> List[JsonDict]:
    if not asset_type or asset_type == "all":
        return list(assets)
    return [a for a in assets if a.get("type") == asset_type]


def _contact_from(row: JsonDict, category: str) -> Optional[JsonDict]:
    email = (row.get("contact_email") or "").strip()
    if not email:
        return None
    key = f"{email}-{category}"
    return {
        "id": key,
        "name": (row.get("contact_name") or "").strip() or "Unknown",
        "organization": row.get("contact_organization") or None,
        "email": email,
        "phone": row.get("contact_phone") or None,
        "type": category[:1].upper() + category[1:],
        "category": category,
        "status": "not_contacted",
    }


def derive_contacts(
    documents: List[JsonDict],
    assets: List[JsonDict],
    sent_keys: Optional[Iterable[str]] = None,
) -> List[JsonDict]:
    """Contacts named in documents then assets, first occurrence of a key wins."""
    sent = set(sent_keys or [])
    contacts: List[JsonDict] = []
    seen: set[str] = set()

    candidates = [(doc, doc.get("category") or "") for doc in documents]
    candidates += [(asset, asset.get("type") or "") for asset in assets]
    for row, category in candidates:
        contact = _contact_from(row, category)
        if contact is None or contact["id"] in seen:
            continue
        seen.add(contact["id"])
        if contact["id"] in sent:
            contact["status"] = "sent"
        contacts.append(contact)
    return contacts


def group_contacts(contacts: List[JsonDict]) -> Dict[str, List[JsonDict]]:
    groups: Dict[str, List[JsonDict]] = {}
    for contact in contacts:
        groups.setdefault(contact["category"], []).append(contact)
    return groups


def all_contacted(contacts: List[JsonDict]) -> bool:
    return bool(contacts) and all(c.get("status") == "sent" for c in contacts)


def outreach_message(
    contact: JsonDict,
    planner_name: str,
    executor_name: Optional[str] = None,
) -> JsonDict:
    subject = f"Notification of Passing - {contact.get('organization') or contact.get('category') or ''}"
    body = OUTREACH_BODY_TEMPLATE.format(
        name=contact.get("name") or "Unknown",
        planner=planner_name,
        topic=(contact.get("category") or "").lower(),
        signature=(executor_name or "").strip() or "[Your Name]",
    )
    return {"subject": subject, "body": body}


def invitation_message(executor_name: str, planner_name: str, link: str, expires_on: str) -> JsonDict:
    """Invitation text handed back to the planner; this service does not deliver it."""
    subject = f"{planner_name} has chosen you as their executor"
    body = (
        f"Hi {executor_name},\n\n"
        f"{planner_name} has chosen you as an executor of their estate on EverEase. "
        "You don't need to do anything right now. Accepting the invitation lets us guide you "
        "step by step if the time ever comes.\n\n"
        f"Accept the invitation here: {link}\n\n"
        f"This link expires on {expires_on}."
    )
    return {"subject": subject, "body": body}


def executor_can_view(session: Optional[JsonDict]) -> bool:
    """Planner data unlocks once a certificate is on file or the death is verified."""
    if not session:
        return False
    return bool(session.get("death_certificate_uploaded") or session.get("death_verified"))


def plan_completeness(counts: JsonDict, has_will: bool) -> JsonDict:
    items = {
        "will": bool(has_will),
        "executors": int(counts.get("executors") or 0) > 0,
        "notes": int(counts.get("notes") or 0) > 0,
        "assets": int(counts.get("assets") or 0) > 0,
        "documents": int(counts.get("documents") or 0) > 0,
    }
    done = sum(1 for v in items.values() if v)
    return {"items": items, "percent": round(done * 100 / len(items))}
