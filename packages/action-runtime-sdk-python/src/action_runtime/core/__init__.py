"""Core：turn 状态、编排循环、结果与事件。"""
