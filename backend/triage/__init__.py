"""
Cleany Triage Module

This module contains the decision and execution engine: message decoding,
the system-sender guard, unsubscribe link discovery and validation, bulk
sender operations and preference learning.
"""

from triage.rules import (
    TriageRules,
    DEFAULT_RULES,
    SYSTEM_DOMAINS,
    SYSTEM_KEYWORDS,
    NEWSLETTER_PLATFORMS,
)

from triage.decoder import (
    Message,
    BodyPart,
    decode_message,
    decode_base64url,
    clean_text,
)

from triage.safety import (
    SafetyCheck,
    SafetyResult,
    SystemSenderGuard,
)

from triage.link_validator import (
    LinkValidator,
    ValidationResult,
)

from triage.unsubscribe import (
    UnsubscribeMethod,
    ResolutionStatus,
    UnsubscribeCandidate,
    UnsubscribeResolver,
    UnsubscribeRequest,
    ExecutionResult,
    execute_unsubscribes,
)

from triage.bulk import (
    BulkOperationError,
    BulkOperationResult,
    BulkSenderOperator,
)

from triage.personalization import (
    LearnedAction,
    PreferenceConflictError,
    PreferenceLearner,
)

from triage.llm_classifier import LLMClassifier

from triage.inbox import (
    InboxCache,
    InboxEmail,
    InboxScanner,
)

__all__ = [
    # Rules
    "TriageRules",
    "DEFAULT_RULES",
    "SYSTEM_DOMAINS",
    "SYSTEM_KEYWORDS",
    "NEWSLETTER_PLATFORMS",
    # Decoder
    "Message",
    "BodyPart",
    "decode_message",
    "decode_base64url",
    "clean_text",
    # Safety
    "SafetyCheck",
    "SafetyResult",
    "SystemSenderGuard",
    # Unsubscribe
    "LinkValidator",
    "ValidationResult",
    "UnsubscribeMethod",
    "ResolutionStatus",
    "UnsubscribeCandidate",
    "UnsubscribeResolver",
    "UnsubscribeRequest",
    "ExecutionResult",
    "execute_unsubscribes",
    # Bulk
    "BulkOperationError",
    "BulkOperationResult",
    "BulkSenderOperator",
    # Preferences
    "LearnedAction",
    "PreferenceConflictError",
    "PreferenceLearner",
    # LLM
    "LLMClassifier",
    # Inbox
    "InboxCache",
    "InboxEmail",
    "InboxScanner",
]
