"""
Scheduling intelligence.

Components:
- models.py: temporal data model (Task, CalendarEvent, Conflict, RecurringRule, ...)
- conflicts.py: ConflictDetector (task vs calendar, task vs task)
- reschedule.py: RescheduleSuggester (single and batch reschedule options)
- prioritization.py: PrioritizationEngine ("what should I do next")
- feedback.py / feedback_store.py: FeedbackLearner and its BiasRepo backends
- recurrence.py: expansion of recurring rules into concrete occurrences
"""
