"""Prompts for owner assessment, contact ranking and outreach drafts."""

import json
from typing import List, Dict, Any

ASSESS_SYSTEM = """You are a precise analyst of Danish property data.
Use ONLY the structured findings you are given. Never invent names or CVR numbers.
If something is unclear, answer "unknown". Unknown is always better than a guess."""

RANK_SYSTEM = """You rank contacts for a Danish property owner.
You may ONLY choose contacts from the numbered list, by their index.
You can NOT add contacts, e-mails or names, and you can NOT change them.
If no contact is good enough, return an empty list."""

DRAFT_SYSTEM = """You write short, polite first-contact e-mails in Danish to property owners
about renting facade space for outdoor advertising. Never promise prices or dates.
Use only the names and facts you are given."""


def assess_prompt(findings: Dict[str, Any]) -> str:
    return f"""## Findings (official registries only)
{json.dumps(findings, ensure_ascii=False, indent=2)}

## Task
Based ONLY on the findings above:
1. Who owns this property? The ownership record is the primary source.
2. Rate data quality by what we HAVE.
3. Give an outdoor advertising potential score from 1 to 10.

Answer as JSON:
{{
  "owner_name": "owner name from the findings, or \\"unknown\\"",
  "owner_cvr": "8-digit CVR number from the findings, or null",
  "score": 1-10,
  "quality_tier": "high | medium | low",
  "reason": "short justification of the quality tier",
  "key_insights": "3-5 sentences about the property"
}}

Rules:
- "high" ONLY when the ownership record and the registry match both confirm the owner
- "medium" when only one of them does
- "low" when neither is reliable"""


def rank_prompt(context: Dict[str, Any], contacts: List[Dict[str, Any]]) -> str:
    lines = "\n".join(
        f"[{c['index']}] Name: {c.get('name') or '?'} | E-mail: {c.get('email') or 'NONE'} | "
        f"Phone: {c.get('phone') or 'NONE'} | Source: {c.get('source')} | Role hint: {c.get('role_hint')}"
        for c in contacts
    )
    return f"""## Property
- Address: {context.get('address')}
- Owner: {context.get('owner_name')}
- CVR: {context.get('owner_cvr') or 'unknown'}
- Registered owners: {', '.join(context.get('registry_owners') or []) or 'none'}
- Registered administrators: {', '.join(context.get('registry_administrators') or []) or 'none'}

## Known contacts (choose ONLY from this list)
{lines}

## Task
Rank the contacts by relevance for THIS property. For each chosen contact give its index,
a confidence from 0.0 to 1.0, relevance "direct" or "indirect", a role and a reason.

Answer as JSON:
{{
  "ranked_contacts": [
    {{"index": 0, "confidence": 0.0, "relevance": "direct", "role": "owner", "reason": "why"}}
  ]
}}

Rules:
- confidence >= 0.7 ONLY when the person is proven owner/chair of THIS property AND has an e-mail
- confidence 0.3-0.6 for probable contacts
- confidence <= 0.3 for generic mailboxes (info@, kontakt@)
- leave out irrelevant contacts; no contacts is better than wrong contacts"""


def draft_prompt(context: Dict[str, Any]) -> str:
    return f"""## Recipient
- Name: {context.get('contact_name') or 'unknown'}
- Role: {context.get('contact_role') or 'unknown'}
- Owner: {context.get('owner_name')}

## Property
- Address: {context.get('address')}, {context.get('postal_code') or ''} {context.get('city') or ''}
- Notes: {context.get('key_insights') or 'none'}

Write the e-mail. Answer as JSON:
{{"subject": "...", "body_text": "...", "internal_note": "one line for the sales team"}}"""
