"""Workflow services. Each public function is one request unit scoped by org_id."""
