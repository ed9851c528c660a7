"""Danish public registries used for ownership resolution.

  - DAWA: address register → access address → cadastral parcel → BFE
  - OIS: owners/administrators and ownership code per BFE
  - CVR: business registry (cvrapi.dk), with proff.dk as directory fallback
"""
