"""
Engage Service Business Logic

- campaign_sender: Batched template sends
- delivery_tracker: Status callbacks and campaign analytics
- conversation_window: 24-hour window tracking and expiry sweep
- window_scheduler: Periodic sweep
- conversation_service: Shared inbox and replies
- template_personalizer: ContentVariables for each recipient
- campaign_service, template_service, contact_service, team_service,
  user_service, media_service, dashboard_service: CRUD and reporting
"""

__all__ = []
