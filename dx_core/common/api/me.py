# dx_core/common/api/me.py
from __future__ import annotations

from rest_framework import status
from rest_framework.permissions import IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from dx_core.common.permissions import user_roles


class MeView(APIView):
    """
    Who the identity system says the caller is, and which pipeline roles they hold.
    """

    permission_classes = [IsAuthenticated]

    def get(self, request):
        user = request.user
        return Response(
            {
                "username": user.get_username(),
                "email": getattr(user, "email", None),
                "roles": sorted(user_roles(user)),
            },
            status=status.HTTP_200_OK,
        )
