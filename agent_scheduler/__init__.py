"""Agent Scheduler backend"""
