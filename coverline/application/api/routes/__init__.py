"""
API Routes

- cover_letters.py: /api/cover-letters CRUD and generation validation
- admin.py: /api/admin metrics dashboard and cache actions
- health.py: /health and /metrics
"""
