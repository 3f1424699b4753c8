"""Request and response models of the webhook endpoint."""

from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from flowgate.core.tracker import TrackerComment


class LinearWebhookPayload(BaseModel):
    """Envelope of a Linear webhook delivery.

    Only the fields the pipeline reads are modelled; everything else in
    ``data`` is kept as-is.
    """

    model_config = ConfigDict(populate_by_name=True)

    action: str = Field(..., min_length=1, description="create, update or remove")
    type: str = Field(..., min_length=1, description="Entity type: Issue, Comment, ...")
    data: Dict[str, Any] = Field(..., description="Entity payload")
    updated_from: Optional[Dict[str, Any]] = Field(
        None, alias="updatedFrom", description="Previous values of changed fields"
    )
    organization_id: Optional[str] = Field(None, alias="organizationId")

    @property
    def entity_id(self) -> Optional[str]:
        return self.data.get("id")

    @property
    def project_id(self) -> Optional[str]:
        return self.data.get("projectId")

    @property
    def state_name(self) -> Optional[str]:
        state = self.data.get("state") or {}
        return state.get("name")

    @property
    def state_changed(self) -> bool:
        """True unless ``updatedFrom`` shows the update left the state alone."""
        if self.updated_from is None:
            return True
        return "stateId" in self.updated_from

    def to_comment(self) -> TrackerComment:
        data = self.data
        user = data.get("user") or {}
        return TrackerComment(
            id=data["id"],
            issue_id=data.get("issueId") or (data.get("issue") or {}).get("id") or "",
            body=data.get("body") or "",
            user_id=data.get("userId") or user.get("id"),
            user_name=user.get("name"),
            parent_id=data.get("parentId"),
            created_at=data.get("createdAt"),
            updated_at=data.get("updatedAt"),
        )


class WebhookAccepted(BaseModel):
    accepted: bool = True
    action: str
    type: str
    entity_id: Optional[str] = None
