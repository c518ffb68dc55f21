"""FitCoach Core -- 领域模型、会话投影与本地持久化"""
