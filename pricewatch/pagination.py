from rest_framework.pagination import LimitOffsetPagination


class AlertOffsetPagination(LimitOffsetPagination):
    default_limit = 100
    max_limit = 1000
