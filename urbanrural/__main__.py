from urbanrural.cli import main

main()
