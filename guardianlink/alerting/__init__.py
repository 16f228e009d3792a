"""
Alerting — notification fan-out and delivery.

Components:
- schemas: domain events, notification intents, stored notification docs
- fanout: FanOutPolicy, event -> per-recipient intents
- notifier: NotificationService, appends one document per intent
"""
