"""Infrastructure - environment, database, retry"""
