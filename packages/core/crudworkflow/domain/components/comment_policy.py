"""Comment policy evaluation."""

from crudworkflow.domain.models.state_schema import CommentPolicy


class CommentError(Exception):
    """Raised when a comment does not satisfy a REQUIRED policy."""

    def __init__(self, message: str, reason: str = "missing") -> None:
        self.message = message
        self.reason = reason
        super().__init__(self.message)


def evaluate(policy: CommentPolicy, supplied_comment: str | None) -> str | None:
    """Return the comment to store for a transition under policy.

    NONE discards any supplied comment. OPTIONAL stores the comment verbatim
    (None is acceptable). REQUIRED stores the comment verbatim but rejects
    None and whitespace-only text.

    Args:
        policy: The transition's comment policy.
        supplied_comment: Comment supplied with the request, if any.

    Returns:
        The comment value to persist on the audit record.

    Raises:
        CommentError: If policy is REQUIRED and the comment is missing or blank.
    """
    if policy == CommentPolicy.NONE:
        return None
    if policy == CommentPolicy.REQUIRED and (
        supplied_comment is None or not supplied_comment.strip()
    ):
        raise CommentError("A comment is required for this transition")
    return supplied_comment
