"""Agents — runtime loop, workflows, skills and remote tool sources."""
