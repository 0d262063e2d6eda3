"""Core configuration, logging, persistence and metrics"""
