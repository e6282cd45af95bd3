"""Domain services and external integrations."""

from navigator.services.billing import billing_service
from navigator.services.llm import llm_service
from navigator.services.memberstack import memberstack_service

__all__ = ["billing_service", "llm_service", "memberstack_service"]
