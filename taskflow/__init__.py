"""TaskFlow - workflow state and session compliance engine."""
