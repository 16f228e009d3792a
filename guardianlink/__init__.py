"""
GuardianLink — Mentor/Student/Parent progress-tracking core.

Architecture:
    guardianlink/
    ├── engine/          # Risk classifier and transition evaluator
    ├── notes/           # Note visibility and approval workflow
    ├── auth/            # Roles, capabilities, actor checks
    ├── alerting/        # Notification fan-out policy and notification store
    ├── meetings/        # Meeting lifecycle and meeting requests
    ├── signaling/       # Peer video-call signaling over the document store
    ├── store/           # Document store interface + in-memory implementation
    ├── schemas/         # Pydantic document models
    ├── services/        # Student record flows wired to the store
    └── scripts/         # Demo seeding

Module Boundaries:
    - The document store is an external dependency — the core only talks to
      the DocumentStore interface
    - Caller identity comes from the identity provider; the core trusts the
      supplied Actor and checks capabilities in auth/
    - Media transport is injected (PeerConnection / MediaProvider); the core
      only relays SDP and ICE candidates

Data Flow:
    Metric update → Risk Transition Evaluator → Fan-out → notifications
    Note operation → Visibility Engine → per-role views
    Meeting action → Lifecycle → Fan-out
    Call join → Signaling Coordinator

Version: 1.0.0
"""

__version__ = "1.0.0"
