"""
NutriScope reminder scheduler package.

Recurring reminders for meals, hydration, workouts, goals, weight logging,
streaks and daily summaries, with a background agent that delivers them.
"""
