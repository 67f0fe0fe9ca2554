"""SMUGGLER CLI"""
