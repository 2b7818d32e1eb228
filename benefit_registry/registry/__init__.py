"""Registry — source of truth for benefit attachments.

The registry provides:
- Attachment: bind benefits to a single token or to the whole collection
- Authorization: only token owners/approved operators (or the collection
  owner/operators) may create, update and remove attachments
- Discovery: look up URIs, assigners and the benefits attached to a scope
- Notifications: one event per successful mutation
"""
