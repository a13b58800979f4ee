"""
Routes package for the Team Workload Service.

Blueprints:
- api: health check, JSON error handlers and shared request helpers
- teams: teams, members and workload views
- projects: projects owned by a team
- tasks: tasks, the rebalancing sweep and the activity feed
"""
