"""Report Engine - Services"""
